"""On-disk store: layout, atomic and locked file access, models, migration."""
