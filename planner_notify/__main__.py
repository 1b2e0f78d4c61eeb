from planner_notify.cli import main

raise SystemExit(main())
