import sys

from tornjak.main import main

sys.exit(main())
