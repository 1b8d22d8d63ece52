"""Allow `python -m presencesync`."""

from presencesync.main import main

raise SystemExit(main())
