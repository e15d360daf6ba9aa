import sys

from universal_renderer.cli import main

sys.exit(main())
