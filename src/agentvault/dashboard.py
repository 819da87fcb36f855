"""agentvault.dashboard — Single-page HTML dashboard served at ``/``.

The page polls the JSON API every 10 seconds; all data flows through the
same routes the CLI and tests use.
"""

from agentvault import __version__
from agentvault.ledger import CAPABILITY_CIRCUITS

POLL_INTERVAL_MS = 10_000

DASHBOARD_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8"><meta name="viewport" content="width=device-width,initial-scale=1">
<title>agentvault — ZK credentials for AI agents</title>
<style>
*{margin:0;padding:0;box-sizing:border-box}
body{font-family:system-ui,-apple-system,sans-serif;background:#0a0a0a;color:#e0e0e0;min-height:100vh}
header{display:flex;justify-content:space-between;align-items:center;padding:20px 32px;border-bottom:1px solid #2a2a2a}
h1{font-size:1.6rem;background:linear-gradient(135deg,#60a5fa,#a78bfa);-webkit-background-clip:text;-webkit-text-fill-color:transparent}
h2{font-size:1.1rem;color:#a78bfa;margin-bottom:12px}
main{max-width:1100px;margin:0 auto;padding:24px 32px}
.mode{padding:4px 10px;border-radius:999px;font-size:.8rem;background:#2a2a2a}
.mode.contract{background:#064e3b;color:#6ee7b7}
.mode.simulated{background:#78350f;color:#fcd34d}
.stats{display:grid;grid-template-columns:repeat(auto-fit,minmax(160px,1fr));gap:12px;margin-bottom:28px}
.stat{background:#161616;border:1px solid #2a2a2a;border-radius:12px;padding:16px}
.stat .n{font-size:1.8rem;font-weight:700;color:#60a5fa}
.stat .l{font-size:.8rem;color:#888}
.cols{display:grid;grid-template-columns:1fr 1fr;gap:24px}
.panel{background:#161616;border:1px solid #2a2a2a;border-radius:12px;padding:20px;margin-bottom:24px}
table{width:100%;border-collapse:collapse;font-size:.85rem}
td,th{padding:6px 4px;border-bottom:1px solid #222;text-align:left}
th{color:#888;font-weight:500}
input,select{background:#0a0a0a;border:1px solid #2a2a2a;color:#e0e0e0;border-radius:6px;padding:8px;width:100%;margin-bottom:8px}
button{padding:8px 18px;background:#60a5fa;color:#0a0a0a;border:0;border-radius:8px;font-weight:600;cursor:pointer}
button.secondary{background:#2a2a2a;color:#e0e0e0}
button.small{padding:4px 8px;font-size:.75rem;margin-right:4px}
button.danger{background:#7f1d1d;color:#fecaca}
label{font-size:.8rem;color:#888}
.caps{display:flex;gap:14px;margin-bottom:8px}
.caps input{width:auto;margin:0 4px 0 0}
.row{display:grid;grid-template-columns:1fr 1fr;gap:8px}
.secret{font-family:monospace;word-break:break-all;background:#0a0a0a;padding:10px;border-radius:6px;color:#fcd34d;margin-top:8px}
.ok{color:#6ee7b7}.bad{color:#f87171}
footer{padding:24px;color:#555;font-size:.8rem;text-align:center}
</style>
</head>
<body>
<header>
  <h1>agentvault</h1>
  <div>
    <span id="mode" class="mode">checking…</span>
    <span id="wallet" style="margin-left:12px;color:#888">not connected</span>
  </div>
</header>
<main>
  <div class="stats">
    <div class="stat"><div class="n" id="s-creds">–</div><div class="l">Credentials</div></div>
    <div class="stat"><div class="n" id="s-auth">–</div><div class="l">Successful auth</div></div>
    <div class="stat"><div class="n" id="s-blocked">–</div><div class="l">Blocked attempts</div></div>
    <div class="stat"><div class="n" id="s-rate">–</div><div class="l">Success rate %</div></div>
    <div class="stat"><div class="n" id="s-agents">–</div><div class="l">Active agents</div></div>
  </div>
  <div class="cols">
    <div>
      <div class="panel">
        <h2>Wallet</h2>
        <input id="wallet-address" placeholder="wallet address">
        <input id="wallet-name" placeholder="display name (optional)">
        <button onclick="connectWallet()">Connect</button>
        <button class="secondary" onclick="disconnectWallet()">Disconnect</button>
      </div>
      <div class="panel">
        <h2 id="form-title">New agent</h2>
        <input id="agent-name" placeholder="agent name">
        <input id="agent-desc" placeholder="description">
        <div class="row">
          <select id="agent-type">
            <option>autonomous</option><option>tool-calling</option><option>human-supervised</option>
          </select>
          <select id="agent-status" disabled>
            <option>active</option><option>inactive</option><option>blocked</option>
          </select>
        </div>
        <label>Capabilities</label>
        <div class="caps">__CAPABILITIES__</div>
        <div class="row">
          <div><label>Operations per hour</label><input id="agent-rate" type="number" min="1" value="100"></div>
          <div><label>Credential expiry (days)</label><input id="agent-expiry" type="number" min="1" value="365"></div>
        </div>
        <input id="scope-secrets" placeholder="accessible secrets (comma-separated)">
        <input id="scope-resources" placeholder="accessible resources (comma-separated)">
        <button id="agent-submit" onclick="saveAgent()">Create &amp; issue credential</button>
        <button class="secondary" onclick="resetForm()">Cancel</button>
        <div id="agent-result"></div>
      </div>
    </div>
    <div>
      <div class="panel">
        <h2>Agents</h2>
        <table><thead><tr><th>Name</th><th>Type</th><th>Status</th><th>Creds</th><th></th></tr></thead>
        <tbody id="agents"></tbody></table>
      </div>
      <div class="panel">
        <h2>Activity</h2>
        <table><thead><tr><th>When</th><th>Agent</th><th>Action</th><th>Result</th></tr></thead>
        <tbody id="activity"></tbody></table>
      </div>
    </div>
  </div>
</main>
<footer>agentvault __VERSION__</footer>
<script>
let session = null;
let agentsById = {};
let editingId = null;
const csv = v => v.split(",").map(s => s.trim()).filter(Boolean);
const el = id => document.getElementById(id);
const esc = s => String(s ?? "").replace(/[&<>"']/g, c => ({"&":"&amp;","<":"&lt;",">":"&gt;",'"':"&quot;","'":"&#39;"}[c]));
async function api(path, opts) {
  const r = await fetch(path, Object.assign({headers: {"Content-Type": "application/json"}}, opts || {}));
  const body = await r.json();
  if (!r.ok) throw new Error(body.error || r.statusText);
  return body;
}
async function refreshStatus() {
  const s = await api("/api/contract-status");
  const el = document.getElementById("mode");
  el.textContent = s.mode === "contract" ? "contract" : "simulated mode";
  el.className = "mode " + s.mode;
}
async function refreshStats() {
  const m = await api("/api/midnight/stats");
  document.getElementById("s-creds").textContent = m.stats.totalCredentials;
  document.getElementById("s-auth").textContent = m.stats.successfulAuth;
  document.getElementById("s-blocked").textContent = m.stats.blockedAttempts;
  document.getElementById("s-rate").textContent = m.metrics.successRate;
  const path = session ? "/api/stats/wallet?address=" + encodeURIComponent(session) : "/api/stats";
  const d = await api(path);
  document.getElementById("s-agents").textContent = d.activeAgents;
}
async function refreshAgents() {
  const path = session ? "/api/agents?wallet=" + encodeURIComponent(session) : "/api/agents";
  const agents = await api(path);
  agentsById = Object.fromEntries(agents.map(a => [a.id, a]));
  el("agents").innerHTML = agents.map(a => {
    const id = esc(a.id);
    const next = a.status === "active" ? "blocked" : "active";
    return `<tr><td>${esc(a.name)}</td><td>${esc(a.agent_type)}</td><td>${esc(a.status)}</td>` +
      `<td>${a.credentials_count}</td><td>` +
      `<button class="small secondary" onclick="editAgent('${id}')">Edit</button>` +
      `<button class="small secondary" onclick="setStatus('${id}', '${next}')">${next === "active" ? "Activate" : "Block"}</button>` +
      `<button class="small danger" onclick="deleteAgent('${id}')">Delete</button></td></tr>`;
  }).join("");
}
async function refreshActivity() {
  const path = session ? "/api/activity/wallet?address=" + encodeURIComponent(session) : "/api/activity";
  const items = await api(path);
  document.getElementById("activity").innerHTML = items.map(i => {
    const result = i.result;
    const cls = result === "success" ? "ok" : "bad";
    return `<tr><td>${esc(new Date(i.timestamp || i.created_at).toLocaleTimeString())}</td>` +
      `<td>${esc(i.agentName || i.agent_name)}</td><td>${esc(i.action)}</td>` +
      `<td class="${cls}">${esc(result)}</td></tr>`;
  }).join("");
}
async function refreshSession() {
  const s = await api("/api/auth/session");
  session = s.connected ? s.walletAddress : null;
  document.getElementById("wallet").textContent = session ? (s.displayName || session) : "not connected";
}
async function connectWallet() {
  const walletAddress = document.getElementById("wallet-address").value;
  const displayName = document.getElementById("wallet-name").value || undefined;
  try {
    await api("/api/auth/connect", {method: "POST", body: JSON.stringify({walletAddress, displayName})});
    await poll();
  } catch (e) { alert(e.message); }
}
async function disconnectWallet() {
  await api("/api/auth/disconnect", {method: "POST"});
  await poll();
}
function formBody() {
  return {
    name: el("agent-name").value,
    description: el("agent-desc").value,
    agent_type: el("agent-type").value,
    capabilities: [...document.querySelectorAll("input[name=cap]:checked")].map(c => c.value),
    rate_limit_per_hour: parseInt(el("agent-rate").value) || 100,
    access_scope: {secrets: csv(el("scope-secrets").value), resources: csv(el("scope-resources").value)},
  };
}
function resetForm() {
  editingId = null;
  el("form-title").textContent = "New agent";
  el("agent-submit").textContent = "Create & issue credential";
  for (const id of ["agent-name", "agent-desc", "scope-secrets", "scope-resources"]) el(id).value = "";
  el("agent-rate").value = 100;
  el("agent-expiry").value = 365;
  el("agent-expiry").disabled = false;
  el("agent-status").disabled = true;
  document.querySelectorAll("input[name=cap]").forEach(c => { c.checked = false; });
}
function editAgent(id) {
  const a = agentsById[id];
  if (!a) return;
  editingId = id;
  el("form-title").textContent = "Edit " + a.name;
  el("agent-submit").textContent = "Save changes";
  el("agent-name").value = a.name;
  el("agent-desc").value = a.description || "";
  el("agent-type").value = a.agent_type;
  el("agent-status").value = a.status;
  el("agent-status").disabled = false;
  el("agent-rate").value = a.rate_limit_per_hour;
  el("agent-expiry").value = a.credential_expiry_days;
  el("agent-expiry").disabled = true;
  const scope = a.access_scope || {};
  el("scope-secrets").value = (scope.secrets || []).join(", ");
  el("scope-resources").value = (scope.resources || []).join(", ");
  document.querySelectorAll("input[name=cap]").forEach(c => { c.checked = (a.capabilities || []).includes(c.value); });
  el("agent-result").innerHTML = "";
}
async function saveAgent() {
  const out = el("agent-result");
  const body = formBody();
  try {
    if (editingId) {
      body.status = el("agent-status").value;
      await api("/api/agents/" + encodeURIComponent(editingId), {method: "PATCH", body: JSON.stringify(body)});
      out.innerHTML = `<p class="ok">Saved</p>`;
    } else {
      body.credential_expiry_days = parseInt(el("agent-expiry").value) || 365;
      const a = await api("/api/agents", {method: "POST", body: JSON.stringify(body)});
      const c = a.midnight_credential;
      out.innerHTML = `<p class="ok">Issued (${esc(c.mode)}) tx ${esc(c.tx_hash).slice(0, 18)}…</p>` +
        `<p>Agent secret, shown once. Store it now:</p><div class="secret">${esc(c.agent_secret)}</div>`;
    }
    resetForm();
    await poll();
  } catch (e) { out.innerHTML = `<p class="bad">${esc(e.message)}</p>`; }
}
async function setStatus(id, status) {
  try {
    await api("/api/agents/" + encodeURIComponent(id), {method: "PATCH", body: JSON.stringify({status})});
    await poll();
  } catch (e) { alert(e.message); }
}
async function deleteAgent(id) {
  if (!confirm("Delete this agent and all of its credentials?")) return;
  try {
    await api("/api/agents/" + encodeURIComponent(id), {method: "DELETE"});
    if (editingId === id) resetForm();
    await poll();
  } catch (e) { alert(e.message); }
}
async function poll() {
  try {
    await refreshSession();
    await Promise.all([refreshStatus(), refreshStats(), refreshAgents(), refreshActivity()]);
  } catch (e) { console.error(e); }
}
poll();
setInterval(poll, __POLL_MS__);
</script>
</body>
</html>"""


def _capability_boxes() -> str:
    return "".join(
        f'<label><input type="checkbox" name="cap" value="{name}">{name}</label>'
        for name in CAPABILITY_CIRCUITS
    )


def render_dashboard() -> str:
    return (DASHBOARD_HTML
            .replace("__VERSION__", __version__)
            .replace("__POLL_MS__", str(POLL_INTERVAL_MS))
            .replace("__CAPABILITIES__", _capability_boxes()))
