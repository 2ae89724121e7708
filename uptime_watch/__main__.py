from uptime_watch.main import main

raise SystemExit(main())
