"""Win32 backup streams, extended attribute buffers, FILETIME and PAX time conversion, and tar conversion."""

__version__ = "0.1.0"
__all__ = ["backup", "ea", "fileinfo", "paxtime", "backuptar"]