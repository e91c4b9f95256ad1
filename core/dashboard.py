# core/dashboard.py
import logging
import time
from typing import Dict, Any, List, Optional
from aiohttp import web

from core.refresh import RefreshPolicy
from core.view import DeviationView

log = logging.getLogger("dashboard")


class Dashboard:
    def __init__(self, port: int = 8080, host: str = "0.0.0.0"):
        self.port = port
        self.host = host
        self.app = web.Application()
        self.app.router.add_get("/", self._handle_index)
        self.app.router.add_get("/api/state", self._handle_state)
        self.app.router.add_get("/api/bots/{bot_id}/deviations", self._handle_deviations)
        self.app.router.add_post("/api/bots/{bot_id}/refresh", self._handle_refresh)
        self.app.router.add_post("/api/bots/{bot_id}/page", self._handle_page)
        self.app.router.add_get("/api/bots/{bot_id}/prices", self._handle_prices)
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None

        self.views: Dict[int, DeviationView] = {}
        self.started_at = time.time()
        self.status = "booting"

    def add_view(self, view: DeviationView) -> None:
        self.views[view.bot_id] = view

    async def start(self) -> None:
        self.runner = web.AppRunner(self.app, access_log=None)
        await self.runner.setup()
        self.site = web.TCPSite(self.runner, self.host, self.port)
        await self.site.start()
        self.status = "running"
        log.info(f"[Dashboard] Listening on http://localhost:{self.port}")

    async def stop(self) -> None:
        self.status = "stopping"
        if self.site:
            await self.site.stop()
        if self.runner:
            await self.runner.cleanup()

    def _view(self, request: web.Request) -> DeviationView:
        try:
            bot_id = int(request.match_info["bot_id"])
        except ValueError:
            raise web.HTTPBadRequest(text="bot id must be an integer")
        view = self.views.get(bot_id)
        if view is None:
            raise web.HTTPNotFound(text=f"bot {bot_id} is not monitored")
        return view

    async def _json_body(self, request: web.Request) -> Dict[str, Any]:
        if not request.can_read_body:
            return {}
        try:
            data = await request.json()
        except ValueError:
            raise web.HTTPBadRequest(text="body must be JSON")
        if not isinstance(data, dict):
            raise web.HTTPBadRequest(text="body must be a JSON object")
        return data

    async def _handle_state(self, request: web.Request) -> web.Response:
        bots: List[Dict[str, Any]] = [
            {"botId": v.bot_id, "timeRange": v.time_range, **v.state.to_dict()}
            for v in self.views.values()
        ]
        return web.json_response({
            "status": self.status,
            "uptime_s": round(time.time() - self.started_at, 1),
            "bots": bots,
        })

    async def _handle_deviations(self, request: web.Request) -> web.Response:
        view = self._view(request)
        return web.json_response(view.snapshot())

    async def _handle_refresh(self, request: web.Request) -> web.Response:
        view = self._view(request)
        data = await self._json_body(request)
        try:
            policy = RefreshPolicy(data.get("policy", RefreshPolicy.MANUAL.value))
        except ValueError:
            return web.json_response(
                {"success": False, "message": f"unknown policy {data.get('policy')!r}"}, status=400)

        log.info(f"[Dashboard] {policy.value} refresh requested for bot {view.bot_id}")
        state = await view.refresh(policy)
        return web.json_response({"success": state.error_message is None, "state": state.to_dict()})

    async def _handle_page(self, request: web.Request) -> web.Response:
        view = self._view(request)
        data = await self._json_body(request)
        try:
            fetched = await view.apply_changes(data)
        except (TypeError, ValueError) as e:
            return web.json_response({"success": False, "message": str(e)}, status=400)
        result = view.snapshot()
        result["fetched"] = fetched
        return web.json_response(result)

    async def _handle_prices(self, request: web.Request) -> web.Response:
        view = self._view(request)
        coins_q = request.query.get("coins", "")
        coins = [c.strip() for c in coins_q.split(",") if c.strip()] or None
        try:
            summary = await view.price_summary(coins, request.query.get("timeRange"))
        except ValueError as e:
            return web.json_response({"success": False, "message": str(e)}, status=400)
        return web.json_response(summary)

    async def _handle_index(self, request: web.Request) -> web.Response:
        html = """
<!DOCTYPE html>
<html>
<head>
    <title>Deviation Monitor</title>
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <script src="https://cdn.jsdelivr.net/npm/chart.js"></script>
    <style>
        body { font-family: 'Segoe UI', sans-serif; background: #0f0f13; color: #e0e0e0; padding: 10px; margin: 0; }
        .card { background: #1e1e24; padding: 20px; margin-bottom: 20px; border-radius: 12px; }
        h1, h2 { color: #00e676; margin-top: 0; font-weight: 300; }
        table { width: 100%; border-collapse: collapse; font-size: 0.9em; }
        th, td { text-align: left; padding: 8px; border-bottom: 1px solid #333; }
        th { cursor: pointer; color: #888; }
        .strong-positive { color: #00e676; font-weight: 600; }
        .positive { color: #69f0ae; }
        .strong-negative { color: #ff1744; font-weight: 600; }
        .negative { color: #ff8a80; }
        .banner { background: #b71c1c; padding: 10px; border-radius: 8px; display: none; }
        .cells { display: flex; flex-wrap: wrap; gap: 6px; }
        .cell { padding: 6px 10px; border-radius: 6px; font-size: 0.85em; }
        button, select { background: #2a2a33; color: #e0e0e0; border: 1px solid #444; padding: 6px 10px; border-radius: 6px; }
    </style>
</head>
<body>
    <h1>Deviation Monitor</h1>
    <div class="card">
        <select id="bot"></select>
        <select id="range">
            <option value="24h">24h</option><option value="7d">7d</option>
            <option value="30d">30d</option><option value="all">All</option>
        </select>
        <button onclick="refresh('manual')">Refresh</button>
        <button onclick="refresh('hard-reset')">Reset</button>
        <span id="status"></span>
    </div>
    <div class="banner" id="banner"></div>
    <div class="card"><h2>Deviation over time</h2><canvas id="chart" height="90"></canvas></div>
    <div class="card"><h2>Latest deviations</h2>
        <table><thead><tr>
            <th onclick="sortBy('pairKey')">Pair</th><th onclick="sortBy('basePrice')">Base</th>
            <th onclick="sortBy('targetPrice')">Target</th><th onclick="sortBy('deviationPercent')">Deviation</th>
        </tr></thead><tbody id="rows"></tbody></table>
        <div><button onclick="turn(-1)">&lt;</button> <span id="pager"></span> <button onclick="turn(1)">&gt;</button></div>
        <div id="empty"></div>
    </div>
    <div class="card"><h2>Heatmap</h2><div class="cells" id="heat"></div></div>
<script>
const COLORS = {">10%": "#00c853", "5–10%": "#2e7d32", "2–5%": "#66bb6a", "0–2%": "#c8e6c9",
    "0 to -2%": "#ffcdd2", "-2 to -5%": "#ef9a9a", "-5 to -10%": "#e53935", "<-10%": "#b71c1c", "unknown": "#555"};
let chart = null, snap = null;
const bot = () => document.getElementById('bot').value;
async function post(path, body) {
    const r = await fetch(`/api/bots/${bot()}/${path}`, {method: 'POST', headers: {'Content-Type': 'application/json'}, body: JSON.stringify(body)});
    return r.json();
}
async function load() {
    const r = await fetch(`/api/bots/${bot()}/deviations`);
    render(await r.json());
}
async function refresh(policy) { await post('refresh', {policy}); await load(); }
async function sortBy(col) { render(await post('page', {sortColumn: col})); }
async function turn(d) {
    const t = snap.table, p = Math.min(Math.max(1, t.page + d), t.totalPages);
    render(await post('page', {page: p}));
}
document.getElementById('range').onchange = async (e) => render(await post('page', {timeRange: e.target.value}));
function render(s) {
    snap = s;
    document.getElementById('status').textContent = s.state.status + (s.state.lastRefreshedAt ? ' · ' + s.state.lastRefreshedAt : '');
    const b = document.getElementById('banner');
    b.style.display = s.state.errorMessage ? 'block' : 'none';
    b.textContent = s.state.errorMessage || '';
    document.getElementById('empty').textContent = s.emptyMessage || '';
    document.getElementById('rows').innerHTML = s.table.rows.map(r =>
        `<tr><td>${r.pair}</td><td>${r.basePrice}</td><td>${r.targetPrice}</td><td class="${r.tone}">${r.direction} ${r.deviation}</td></tr>`).join('');
    document.getElementById('pager').textContent = `${s.table.page} / ${s.table.totalPages}`;
    document.getElementById('heat').innerHTML = s.heatmap.cells.map(c =>
        `<div class="cell" style="background:${COLORS[c.bucket]}">${c.pairKey}</div>`).join('');
    const ds = s.chart.series.map(x => ({label: x.label, data: x.points, spanGaps: true, pointRadius: 0}));
    if (!chart) {
        chart = new Chart(document.getElementById('chart'), {type: 'line', data: {labels: s.chart.labels, datasets: ds}});
    } else {
        chart.data.labels = s.chart.labels; chart.data.datasets = ds; chart.update('none');
    }
}
(async () => {
    const st = await (await fetch('/api/state')).json();
    document.getElementById('bot').innerHTML = st.bots.map(x => `<option value="${x.botId}">Bot ${x.botId}</option>`).join('');
    document.getElementById('bot').onchange = load;
    if (st.bots.length) { await load(); setInterval(load, 10000); }
})();
</script>
</body>
</html>
"""
        return web.Response(text=html, content_type='text/html')
