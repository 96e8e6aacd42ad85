from sealedtask.cli import main

raise SystemExit(main())
