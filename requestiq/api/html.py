"""Dashboard page markup."""

from __future__ import annotations

import json

_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>RequestIQ Dashboard</title>
  <style>
    * { margin: 0; padding: 0; box-sizing: border-box; }
    body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; background: #f5f5f5; }
    .container { max-width: 1200px; margin: 0 auto; padding: 20px; }
    .card { background: white; padding: 20px; border-radius: 8px; box-shadow: 0 2px 4px rgba(0,0,0,0.1); margin-bottom: 20px; }
    .stats-grid { display: grid; grid-template-columns: repeat(auto-fit, minmax(220px, 1fr)); gap: 20px; margin-bottom: 20px; }
    .stat-value { font-size: 2em; font-weight: bold; color: #2563eb; }
    .stat-label { color: #6b7280; margin-top: 5px; }
    .banner { display: none; background: #fef2f2; color: #b91c1c; padding: 12px; border-radius: 6px; margin-bottom: 20px; }
    table { width: 100%; border-collapse: collapse; }
    th, td { padding: 10px; text-align: left; border-bottom: 1px solid #e5e7eb; }
    th { background: #f9fafb; font-weight: 600; }
    .percentiles { display: flex; justify-content: space-around; }
    .percentiles div { text-align: center; }
    select, button { padding: 8px 14px; border-radius: 6px; border: 1px solid #d1d5db; }
    button { background: #2563eb; color: white; border: none; cursor: pointer; }
  </style>
</head>
<body>
  <div class="container">
    <div class="card">
      <h1>RequestIQ Dashboard</h1>
      <p>Request latency, status and traffic analytics</p>
      <button onclick="loadDashboard()">Refresh</button>
      <select id="timeFilter" onchange="loadDashboard()">
        <option value="1">Last 1 hour</option>
        <option value="6">Last 6 hours</option>
        <option value="24" selected>Last 24 hours</option>
        <option value="168">Last 7 days</option>
      </select>
    </div>

    <div class="banner" id="banner"></div>

    <div class="stats-grid">
      <div class="card"><div class="stat-value" id="totalRequests">-</div><div class="stat-label">Total Requests</div></div>
      <div class="card"><div class="stat-value" id="averageDuration">-</div><div class="stat-label">Average Latency (ms)</div></div>
      <div class="card"><div class="stat-value" id="slowRequests">-</div><div class="stat-label">Slow Requests</div></div>
      <div class="card"><div class="stat-value" id="errorRate">-</div><div class="stat-label">Error Rate (%)</div></div>
      <div class="card"><div class="stat-value" id="uniqueClients">-</div><div class="stat-label">Unique Clients</div></div>
    </div>

    <div class="card">
      <h3>Latency Percentiles</h3>
      <div class="percentiles" id="percentiles"></div>
    </div>

    <div class="card">
      <h3>Top Paths</h3>
      <table><thead><tr><th>Path</th><th>Requests</th></tr></thead><tbody id="topPaths"></tbody></table>
    </div>

    <div class="card">
      <h3>Countries</h3>
      <table><thead><tr><th>Country</th><th>Requests</th></tr></thead><tbody id="countries"></tbody></table>
    </div>
  </div>

  <script>
    const DASHBOARD_PATH = __DASHBOARD_PATH__;

    function rows(entries, labelKey) {
      return entries.map(e => `<tr><td>${e[labelKey]}</td><td>${e.count}</td></tr>`).join('');
    }

    async function loadDashboard() {
      const hours = document.getElementById('timeFilter').value;
      const banner = document.getElementById('banner');
      const response = await fetch(`${DASHBOARD_PATH}?action=dashboard-data&hours=${hours}`);
      const data = await response.json();

      if (!data.available) {
        banner.style.display = 'block';
        banner.textContent = 'Data unavailable: ' + (data.error || 'analytics store unreachable');
        return;
      }
      banner.style.display = data.complete ? 'none' : 'block';
      banner.textContent = data.complete ? '' : `Partial result: ${data.bucketsScanned}/${data.bucketsExpected} buckets read`;

      document.getElementById('totalRequests').textContent = data.totalRequests.toLocaleString();
      document.getElementById('averageDuration').textContent = Math.round(data.averageDuration);
      document.getElementById('slowRequests').textContent = data.slowRequests.toLocaleString();
      document.getElementById('errorRate').textContent = (data.errorRate * 100).toFixed(2);
      document.getElementById('uniqueClients').textContent = data.uniqueClients.toLocaleString();
      document.getElementById('percentiles').innerHTML = Object.entries(data.percentiles)
        .map(([k, v]) => `<div><div class="stat-value">${v}ms</div><div class="stat-label">${k.toUpperCase()}</div></div>`)
        .join('');
      document.getElementById('topPaths').innerHTML = rows(data.topPaths, 'path');
      document.getElementById('countries').innerHTML = rows(data.countryDistribution, 'country');
    }

    loadDashboard();
    setInterval(loadDashboard, 30000);
  </script>
</body>
</html>
"""


def dashboard_html(dashboard_path: str) -> str:
    # json.dumps yields a quoted JS string literal
    return _TEMPLATE.replace("__DASHBOARD_PATH__", json.dumps(dashboard_path))
