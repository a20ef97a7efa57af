"""
Lab server: one robot session stepped on a background thread, and a small
Flask panel to watch and steer it.
"""

from __future__ import annotations

import json
import logging
import threading
import time
import traceback
from typing import Any, Dict, Optional

import numpy as np
from flask import Flask, Response, jsonify, request

from .brain import FitResult
from .config import MAX_SPEED, MIN_SPEED, LabConfig
from .controller import BossController, ExportResult
from .lab_state import LabState
from .morphology import MORPHOLOGIES, UnknownMorphologyError, get_morphology
from .scheduler import Telemetry, TrainingScheduler
from .world import RagdollWorld

log = logging.getLogger(__name__)

FRAME_DT = 1.0 / 60.0
MAX_FRAME_DT = 0.1


# =============================================================================
# SESSION
# =============================================================================

class LabSession:
    """Controller + scheduler + world for the robot currently on the bench."""

    def __init__(self, config: LabConfig, state: Optional[LabState] = None):
        self.config = config
        self.state = state or LabState()
        self.lock = threading.RLock()
        self.controller: BossController
        self.scheduler: TrainingScheduler
        self.world: RagdollWorld
        self._seen_fit: Optional[FitResult] = None
        self._build(config.robot)

    def _build(self, robot_id: str) -> None:
        morph = get_morphology(robot_id)
        self.config.robot = morph.id
        self.controller = BossController(morph, seed=self.config.seed)
        self.scheduler = TrainingScheduler(self.controller, self.config)
        self.world = RagdollWorld(morph, rng=np.random.default_rng(self.config.seed))
        self.scheduler.on_reset(self.world.respawn)
        self.scheduler.on_telemetry(self._publish)
        self._seen_fit = None
        self.state.update(world=self.world.snapshot())
        self.state.add_log(f"🤖 {morph.display_name}: {morph.sensor_count} sensors, "
                           f"{morph.motor_count} motors ({morph.capacity_tier})")

    def _publish(self, telemetry: Telemetry) -> None:
        self.state.update(telemetry=telemetry.to_dict())

    def step(self, frame_dt: float) -> None:
        """One physics frame: control, then integrate at the simulation speed."""
        with self.lock:
            self.scheduler.tick(frame_dt, self.world.bodies)
            self.world.step(frame_dt * self.scheduler.simulation_speed)
            self.state.update(world=self.world.snapshot())
            self._report_fit()

    def _report_fit(self) -> None:
        fit = self.controller.brain.last_fit
        if fit is None or fit is self._seen_fit:
            return
        self._seen_fit = fit
        if fit.loss is not None:
            self.state.add_log(f"🧠 Fit {fit.status.value}: {fit.samples} samples, loss={fit.loss:.4f}")
        else:
            self.state.add_log(f"🧠 Fit {fit.status.value}: {fit.samples} samples")

    # ------------------------------------------------------------------
    # user actions
    # ------------------------------------------------------------------

    def train_now(self) -> FitResult:
        """Fit off the simulation lock when background training is on (PENDING result)."""
        with self.lock:
            if not self.controller.is_initialized:
                self.controller.create_model()
            result = self.controller.train(background=self.config.background_training)
            self._report_fit()
            return result

    def set_training_active(self, active: Optional[bool] = None) -> bool:
        with self.lock:
            if active is None:
                active = not self.controller.training_active
            self.controller.set_training_active(active)
        self.state.add_log("▶️ Training resumed" if active else "⏸ Training paused")
        return active

    def reset_model(self) -> None:
        with self.lock:
            self.controller.reset_model()
        self.state.add_log("🔄 Model reset (experience kept)")

    def reset_all(self) -> None:
        with self.lock:
            self.controller.reset_all()
            self.scheduler.reset()
            self.world.respawn()
            self.controller.reset_position_state()
        self.state.add_log("🧹 Everything reset")

    def respawn(self) -> None:
        with self.lock:
            self.scheduler.end_episode()
        self.state.add_log("↩️ Respawned")

    def switch_robot(self, robot_id: str) -> None:
        with self.lock:
            get_morphology(robot_id)
            old = self.controller
            self._build(robot_id)
            old.close()

    def set_speed(self, speed: float) -> float:
        speed = float(np.clip(float(speed), MIN_SPEED, MAX_SPEED))
        with self.lock:
            self.scheduler.set_simulation_speed(speed)
            self.config.simulation_speed = speed
        self.state.add_log(f"⏩ Speed x{speed:g}")
        return speed

    def export(self) -> ExportResult:
        with self.lock:
            result = self.controller.export_model(self.config.export_dir)
        if result.success:
            self.state.add_log(f"💾 Exported {result.filename}")
        else:
            self.state.add_log(f"❌ Export failed: {result.error}")
        return result

    def import_document(self, doc: Dict[str, Any]) -> None:
        with self.lock:
            self.controller.load_model(doc)
        self.state.add_log("📥 Model imported")

    def status(self) -> Dict[str, Any]:
        with self.lock:
            out = self.state.snapshot()
            out["controller"] = self.controller.stats()
            out["scheduler"] = self.scheduler.stats()
        out["robots"] = {m.id: m.display_name for m in MORPHOLOGIES.values()}
        return out

    def close(self) -> None:
        with self.lock:
            self.controller.close()


class SimulationThread(threading.Thread):
    """Steps the session at roughly FRAME_DT intervals until stopped."""

    def __init__(self, session: LabSession, frame_dt: float = FRAME_DT):
        super().__init__(daemon=True, name="boss-sim")
        self.session = session
        self.frame_dt = frame_dt
        self._stop_event = threading.Event()

    def stop(self) -> None:
        self._stop_event.set()

    def run(self) -> None:
        self.session.state.set_status("RUNNING")
        last = time.perf_counter()
        while not self._stop_event.is_set():
            now = time.perf_counter()
            delta = min(now - last, MAX_FRAME_DT)
            last = now
            try:
                self.session.step(delta)
            except Exception as e:
                log.exception("simulation step failed")
                self.session.state.add_log(f"❌ Sim error: {str(e)[:60]}")
            spare = self.frame_dt - (time.perf_counter() - now)
            if spare > 0:
                self._stop_event.wait(spare)
        self.session.state.set_status("STOPPED")


# =============================================================================
# WEB PANEL
# =============================================================================

HTML = r"""<!doctype html>
<html>
<head>
<meta charset="utf-8">
<title>Boss Lab</title>
<style>
body{background:#111;color:#ddd;font-family:monospace;margin:16px}
button,select{background:#222;color:#ddd;border:1px solid #444;padding:4px 10px;margin:2px}
#wrap{display:flex;gap:16px}
#stats td{padding:1px 8px}
#logs{font-size:12px;color:#9a9;white-space:pre}
canvas{background:#000;border:1px solid #333}
</style>
</head>
<body>
<h2>🤖 Boss Lab <span id="status"></span></h2>
<div>
  <select id="robot"></select>
  <button onclick="post('/robot',{robot:document.getElementById('robot').value})">Switch</button>
  <button onclick="post('/training')">Pause / resume</button>
  <button onclick="post('/train')">Train now</button>
  <button onclick="post('/respawn')">Respawn</button>
  <button onclick="post('/reset_model')">Reset model</button>
  <button onclick="post('/reset_all')">Reset all</button>
  speed <input id="speed" type="range" min="0.25" max="4" step="0.25" value="1"
               onchange="post('/speed',{speed:parseFloat(this.value)})">
  <a href="/export"><button>Export</button></a>
</div>
<div id="wrap">
  <canvas id="view" width="420" height="360"></canvas>
  <table id="stats"></table>
</div>
<div id="logs"></div>
<script>
function post(url, body){
  return fetch(url,{method:'POST',headers:{'Content-Type':'application/json'},
                    body:JSON.stringify(body||{})}).then(r=>r.json()).then(poll);
}
const SHOW = [['robot_name','robot'],['samples','samples'],['best_fitness','best'],
  ['mean_fitness','mean fitness'],['exploration_rate','explore'],['step_count','steps'],
  ['fits','fits'],['is_training','training'],['training_active','collecting']];
function fmt(v){ return (typeof v==='number') ? v.toFixed(3) : String(v); }
function draw(world){
  const c = document.getElementById('view'), g = c.getContext('2d');
  g.clearRect(0,0,c.width,c.height);
  const sx = 120, ox = c.width/2, oy = c.height-30;
  g.strokeStyle='#444'; g.beginPath(); g.moveTo(0,oy); g.lineTo(c.width,oy); g.stroke();
  if(!world) return;
  for(const [name,p] of Object.entries(world.bodies)){
    g.fillStyle = name==='head' ? '#fc6' : name==='torso' ? '#6cf' : name.endsWith('foot') ? '#6f6' : '#aaa';
    g.beginPath(); g.arc(ox+p[0]*sx, oy-p[1]*sx, name==='torso'?9:5, 0, 7); g.fill();
  }
}
function poll(){
  fetch('/status').then(r=>r.json()).then(s=>{
    document.getElementById('status').textContent = s.status;
    const sel = document.getElementById('robot');
    if(!sel.options.length){
      for(const [id,name] of Object.entries(s.robots)){ sel.add(new Option(name,id)); }
    }
    sel.value = s.controller.robot;
    const t = s.telemetry || {};
    let rows = SHOW.map(([k,l])=>`<tr><td>${l}</td><td>${fmt(s.controller[k])}</td></tr>`).join('');
    rows += `<tr><td>fitness</td><td>${fmt(t.fitness)}</td></tr>`;
    rows += `<tr><td>episode</td><td>${s.scheduler.episode}</td></tr>`;
    rows += `<tr><td>speed</td><td>x${s.scheduler.simulation_speed}</td></tr>`;
    document.getElementById('stats').innerHTML = rows;
    document.getElementById('logs').textContent = s.logs.join('\n');
    draw(s.world);
  }).catch(()=>{});
}
setInterval(poll, 500); poll();
</script>
</body>
</html>
"""


def _payload() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def create_app(session: LabSession) -> Flask:
    app = Flask(__name__)

    @app.get("/")
    def index() -> Response:
        return Response(HTML, mimetype="text/html")

    @app.get("/status")
    def status():
        try:
            return jsonify(session.status())
        except Exception as e:
            log.exception("status failed")
            return jsonify({
                "error": str(e),
                "traceback": traceback.format_exc()[:500],
                "status": "ERROR",
                "logs": [f"Status endpoint error: {e}"],
            }), 500

    @app.post("/train")
    def train():
        result = session.train_now()
        return jsonify(result.to_dict())

    @app.post("/training")
    def training():
        active = _payload().get("active")
        return jsonify({"training_active": session.set_training_active(
            None if active is None else bool(active))})

    @app.post("/reset_model")
    def reset_model():
        session.reset_model()
        return jsonify({"status": "ok"})

    @app.post("/reset_all")
    def reset_all():
        session.reset_all()
        return jsonify({"status": "ok"})

    @app.post("/respawn")
    def respawn():
        session.respawn()
        return jsonify({"status": "ok"})

    @app.post("/robot")
    def robot():
        robot_id = _payload().get("robot") or request.get_data(as_text=True).strip()
        try:
            session.switch_robot(robot_id)
        except UnknownMorphologyError as e:
            return jsonify({"error": str(e.args[0])}), 400
        return jsonify({"status": "ok", "robot": session.config.robot})

    @app.post("/speed")
    def speed():
        try:
            value = float(_payload().get("speed", request.get_data(as_text=True) or "nan"))
        except (TypeError, ValueError):
            return jsonify({"error": "speed must be a number"}), 400
        if not np.isfinite(value):
            return jsonify({"error": "speed must be a number"}), 400
        return jsonify({"simulation_speed": session.set_speed(value)})

    @app.get("/export")
    def export():
        result = session.export()
        if not result.success:
            return jsonify({"success": False, "error": result.error}), 400
        return Response(
            json.dumps(result.document),
            mimetype="application/json",
            headers={"Content-Disposition": f"attachment; filename={result.filename}"},
        )

    @app.post("/import")
    def import_model():
        doc = request.get_json(silent=True)
        if not isinstance(doc, dict) or "tensors" not in doc:
            return jsonify({"error": "expected an exported model document"}), 400
        try:
            session.import_document(doc)
        except (ValueError, KeyError, RuntimeError) as e:
            return jsonify({"error": str(e)}), 400
        return jsonify({"status": "ok"})

    return app
