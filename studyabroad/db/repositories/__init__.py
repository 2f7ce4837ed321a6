"""
Repositories - plain async data-access functions.

Every function takes the caller's AsyncSession and is wrapped by
`data_access`, which adds logging, metrics and error translation.
Transaction boundaries (commit/rollback) belong to the calling service.
"""
