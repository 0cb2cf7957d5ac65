"""Repository layer for the CRM association store.

Provides query and write helpers on top of the ORM models:
- documents: get, exists, create, list_doc_ids, set_field (version-guarded)
- cache_entries: get_entry, put_entry, delete_entry, delete_for_owner
"""
