"""DMS Documents — Folder/file hierarchy, locks, tree operations, bulk entries and archives."""
