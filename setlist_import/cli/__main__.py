"""Allow ``python -m setlist_import.cli`` execution."""

import sys

from setlist_import.cli.importer import main

sys.exit(main())
