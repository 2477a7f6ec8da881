import sys

from rusty_tags.cli import main

sys.exit(main())
