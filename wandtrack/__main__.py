from .calibration_app import main

raise SystemExit(main())
