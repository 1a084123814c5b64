import uvicorn
import argparse
import logging
import os
import threading
import time

# Direct import so a frozen sidecar build picks up the connvault package.
from connvault.main import app

logger = logging.getLogger("connvault")


def _parent_watcher():
    """Exit once the desktop shell that spawned us is gone, taking any cached passphrase with it."""
    ppid = os.getppid()
    while True:
        try:
            # Reparented to init, or signal 0 fails: the shell has exited.
            if ppid == 1:
                os._exit(0)
            os.kill(ppid, 0)
        except OSError:
            os._exit(0)
        time.sleep(3)

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="connvault credential vault sidecar")
    parser.add_argument("--host", type=str, default="127.0.0.1", help="Host interface to bind")
    parser.add_argument("--port", type=int, default=8334, help="Port to run the backend on")
    parser.add_argument("--dir", type=str, default="./workspace", help="Workspace directory for stores")
    parser.add_argument("--log-level", type=str, default="info", help="Logging level")

    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # VaultStorage reads the workspace from here when the first request arrives
    os.environ["CONNVAULT_WORKSPACE"] = args.dir

    threading.Thread(target=_parent_watcher, daemon=True).start()

    logger.info("starting connvault on http://%s:%d", args.host, args.port)
    logger.info("workspace: %s", os.path.abspath(args.dir))

    # No reload: the sidecar ships as a single frozen executable
    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        reload=False,
        log_level=args.log_level.lower(),
    )
