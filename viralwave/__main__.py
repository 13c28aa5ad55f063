import sys

from viralwave.cli import main

sys.exit(main())
