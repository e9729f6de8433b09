"""Allow ``python -m backup_drill``."""

from backup_drill.cli import main

main()
