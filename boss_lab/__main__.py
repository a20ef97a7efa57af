"""
Run the lab:

    pip install -e .
    python -m boss_lab

Environment: BOSS_LAB_ROBOT, BOSS_LAB_SPEED, BOSS_LAB_COLLECTION_MODE,
BOSS_LAB_EXPORT_DIR, BOSS_LAB_SEED, HOST, PORT.
"""

from __future__ import annotations

import logging
import time
import webbrowser

import torch

from .config import LabConfig
from .server import LabSession, SimulationThread, create_app

log = logging.getLogger("boss_lab")


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="[BOSS_LAB] %(message)s")
    logging.getLogger("werkzeug").setLevel(logging.ERROR)
    torch.set_num_threads(1)

    config = LabConfig.from_env()
    session = LabSession(config)
    session.state.add_log("🦿 BOSS LAB: learning to stand")
    session.state.add_log(f"🎯 Collection: {config.collection_mode}, speed x{config.simulation_speed:g}")

    sim = SimulationThread(session)
    sim.start()

    url = f"http://{config.host}:{config.port}"
    session.state.add_log(f"🌐 {url}")
    try:
        time.sleep(0.8)
        webbrowser.open(url)
    except Exception as e:
        log.debug("could not open browser: %s", e)

    app = create_app(session)
    try:
        app.run(host=config.host, port=config.port, debug=False, threaded=True, use_reloader=False)
    finally:
        sim.stop()
        sim.join(timeout=2.0)
        session.close()


if __name__ == "__main__":
    main()
