"""File Mover Service — moves new files out of a watched folder.

Watches a source folder for newly created files and moves each one,
once fully written, to a destination folder, retrying while another
process still holds the file open.
"""

__version__ = "1.0.0"
__app_name__ = "File Mover Service"
