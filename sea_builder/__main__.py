import sys

from sea_builder.cli import main

sys.exit(main())
