import sys

from marquee_sync.cli import main

sys.exit(main())
