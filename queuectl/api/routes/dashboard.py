"""
HTML overview page. Polls the JSON endpoints from the browser.
"""

from fastapi import APIRouter
from fastapi.responses import HTMLResponse

router = APIRouter(tags=["Dashboard"])

DASHBOARD_HTML = """<!DOCTYPE html>
<html>
<head>
  <title>queuectl dashboard</title>
  <style>
    body { font-family: 'Segoe UI', Roboto, sans-serif; margin: 0; padding: 20px;
           background: #0d1117; color: #e6edf3; }
    .container { max-width: 1200px; margin: 0 auto; background: #161b22;
                 padding: 30px; border-radius: 10px; }
    h1, h2 { color: #58a6ff; }
    .grid { display: grid; grid-template-columns: repeat(auto-fit, minmax(180px, 1fr));
            gap: 16px; margin: 20px 0; }
    .card { background: #21262d; padding: 15px 20px; border-radius: 8px;
            border: 1px solid #30363d; }
    .label { font-size: 12px; color: #8b949e; text-transform: uppercase; }
    .value { font-size: 26px; font-weight: bold; margin-top: 8px; }
    table { width: 100%; border-collapse: collapse; margin-top: 15px; }
    th, td { padding: 8px 10px; border-bottom: 1px solid #30363d; text-align: left; }
    .ok { color: #3fb950; } .bad { color: #f85149; }
  </style>
</head>
<body>
<div class="container">
  <h1>queuectl</h1>
  <h2>Statistics</h2>
  <div class="grid" id="stats"></div>
  <h2>Jobs by state</h2>
  <div class="grid" id="jobs"></div>
  <h2>Recent executions</h2>
  <table>
    <thead><tr><th>Job</th><th>Command</th><th>State</th><th>Started</th>
      <th>Duration (ms)</th><th>Result</th></tr></thead>
    <tbody id="executions"></tbody>
  </table>
</div>
<script>
function card(label, value) {
  return '<div class="card"><div class="label">' + label + '</div><div class="value">'
    + value + '</div></div>';
}
function text(value) {
  const span = document.createElement('span');
  span.textContent = value == null ? '' : String(value);
  return span.innerHTML;
}
async function refresh() {
  const stats = await (await fetch('/api/stats')).json();
  document.getElementById('stats').innerHTML =
    card('Processed', stats.total_processed) + card('Succeeded', stats.total_succeeded) +
    card('Failed', stats.total_failed) + card('Timed out', stats.total_timeout) +
    card('Success rate', stats.success_rate.toFixed(1) + '%') +
    card('Avg duration (24h)', stats.avg_duration_ms.toFixed(0) + ' ms');
  const jobs = await (await fetch('/api/jobs')).json();
  document.getElementById('jobs').innerHTML =
    Object.entries(jobs).map(([state, count]) => card(state, count)).join('');
  const executions = await (await fetch('/api/executions?limit=20')).json();
  document.getElementById('executions').innerHTML = executions.map(e =>
    '<tr><td>' + text(e.job_id) + '</td><td>' + text(e.command) + '</td><td>' + text(e.state)
    + '</td><td>' + text(e.started_at) + '</td><td>' + text(e.duration_ms) + '</td><td class="'
    + (e.success ? 'ok">ok' : 'bad">' + (e.timeout ? 'timeout' : 'failed')) + '</td></tr>'
  ).join('');
}
refresh();
setInterval(refresh, 5000);
</script>
</body>
</html>
"""


@router.get("/", response_class=HTMLResponse, include_in_schema=False)
def dashboard() -> str:
    return DASHBOARD_HTML
