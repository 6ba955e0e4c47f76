import sys

from opencode_supervisor.main import main

sys.exit(main())
