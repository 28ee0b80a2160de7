from crm_api.platform.store.records import RecordStore, WriteOutcome, WriteResult

__all__ = ["RecordStore", "WriteOutcome", "WriteResult"]
