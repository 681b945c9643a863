import sys

from lldp_mirror.main import main

sys.exit(main())
