import sys

from dohrelay.main import main

sys.exit(main())
