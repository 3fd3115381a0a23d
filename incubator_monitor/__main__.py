import sys

from incubator_monitor.app import main

sys.exit(main())
