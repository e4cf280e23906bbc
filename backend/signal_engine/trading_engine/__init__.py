"""
Trading Engine Components

Signal lifecycle and per-user execution:
- SignalWatcher: drives a Signal from pending to active to closed/cancelled
- PositionWatcher: executes one UserSignal (entry, protective orders, close)
- WatcherRegistry: owns watcher tasks, at most one per row
- SignalDispatcher: fans new signals out to subscribers
- ResumptionManager: rebuilds watchers from the database at startup
"""
