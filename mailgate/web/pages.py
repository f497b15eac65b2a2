"""HTML for the approval dashboard and the first-run setup page."""

from __future__ import annotations

import html

DASHBOARD_HTML = """<!DOCTYPE html>
<html>
<head>
    <title>Outbox - Agent-Safe Review</title>
    <meta charset="utf-8">
    <style>
        * { box-sizing: border-box; }
        body { font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif;
               max-width: 800px; margin: 0 auto; padding: 20px; background: #f5f5f5; }
        h1 { color: #333; border-bottom: 2px solid #4CAF50; padding-bottom: 10px; }
        .status { padding: 15px; border-radius: 8px; margin-bottom: 20px; }
        .status.waiting { background: #e3f2fd; border: 1px solid #90caf9; color: #1565c0; }
        .status.pending { background: #fff3e0; border: 1px solid #ffcc80; color: #e65100; }
        .email-card { background: white; border-radius: 8px; padding: 20px;
                      box-shadow: 0 2px 4px rgba(0,0,0,0.1); margin-bottom: 20px; }
        .email-field { margin-bottom: 8px; }
        .email-field label { font-weight: 600; color: #666; display: inline-block; width: 80px; }
        .email-body { background: #fafafa; border: 1px solid #eee; border-radius: 4px; padding: 15px;
                      white-space: pre-wrap; line-height: 1.5; max-height: 400px; overflow-y: auto; }
        .buttons { display: flex; gap: 15px; margin-top: 20px; }
        button { flex: 1; padding: 15px 30px; font-size: 16px; font-weight: 600; border: none;
                 border-radius: 8px; cursor: pointer; color: white; }
        .btn-approve { background: #4CAF50; }
        .btn-reject { background: #f44336; }
        button:disabled { opacity: 0.5; cursor: not-allowed; }
        .history h2 { color: #666; font-size: 14px; text-transform: uppercase; }
        .history-item { padding: 10px; border-bottom: 1px solid #eee; font-size: 14px; }
        .history-item.approved { border-left: 3px solid #4CAF50; }
        .history-item.rejected, .history-item.timed_out { border-left: 3px solid #f44336; }
        .footer { text-align: center; color: #999; font-size: 12px; margin-top: 30px; }
    </style>
</head>
<body>
    <h1>Outbox</h1>
    <p style="color: #666;">Agent-Safe Review Dashboard</p>

    <div id="status" class="status waiting">Waiting for emails to review...</div>

    <div id="email-container" style="display: none;">
        <div class="email-card">
            <div class="email-field"><label>To:</label><span id="email-to"></span></div>
            <div class="email-field"><label>Subject:</label><span id="email-subject"></span></div>
            <div class="email-field"><label>Expires:</label><span id="email-expires"></span></div>
            <div class="email-body" id="email-body"></div>
            <div class="buttons">
                <button class="btn-approve" id="btn-approve" onclick="decide('approve')">APPROVE</button>
                <button class="btn-reject" id="btn-reject" onclick="decide('reject')">REJECT</button>
            </div>
        </div>
    </div>

    <div class="history" id="history-container" style="display: none;">
        <h2>History</h2>
        <div id="history-list"></div>
    </div>

    <div class="footer">
        Session: __SESSION_ID__<br>
        This dashboard is agent-inaccessible. Only you can approve emails.
    </div>

    <script>
        const sessionID = "__SESSION_ID__";
        let currentPendingId = null;
        let pollTimer = null;

        function startPolling() {
            if (pollTimer === null) {
                pollTimer = setInterval(fetchPending, 2000);
            }
        }

        if (window.EventSource) {
            const evtSource = new EventSource("/events/" + sessionID);
            evtSource.onmessage = function() { fetchPending(); };
            evtSource.onerror = function() { startPolling(); };
        } else {
            startPolling();
        }

        function setButtons(enabled) {
            document.getElementById("btn-approve").disabled = !enabled;
            document.getElementById("btn-reject").disabled = !enabled;
        }

        function renderHistory(history) {
            const container = document.getElementById("history-container");
            const list = document.getElementById("history-list");
            list.textContent = "";
            if (!history || history.length === 0) {
                container.style.display = "none";
                return;
            }
            container.style.display = "block";
            history.slice().reverse().forEach(function(entry) {
                const item = document.createElement("div");
                item.className = "history-item " + entry.outcome;
                const when = new Date(entry.timestamp * 1000).toLocaleTimeString();
                item.textContent = entry.outcome + " (" + entry.source + "): " + entry.to +
                    " - " + entry.subject + " at " + when;
                list.appendChild(item);
            });
        }

        async function fetchPending() {
            try {
                const resp = await fetch("/api/pending/" + sessionID);
                const data = await resp.json();
                renderHistory(data.history);
                if (data.pending) {
                    currentPendingId = data.id;
                    document.getElementById("status").className = "status pending";
                    document.getElementById("status").textContent = "Email pending approval";
                    document.getElementById("email-to").textContent = data.to;
                    document.getElementById("email-subject").textContent = data.subject;
                    document.getElementById("email-body").textContent = data.body;
                    document.getElementById("email-expires").textContent = data.expiresIn + "s";
                    document.getElementById("email-container").style.display = "block";
                    setButtons(true);
                } else {
                    currentPendingId = null;
                    document.getElementById("status").className = "status waiting";
                    document.getElementById("status").textContent = "Waiting for emails to review...";
                    document.getElementById("email-container").style.display = "none";
                }
            } catch (err) {
                console.error("Error fetching pending:", err);
            }
        }

        async function decide(verdict) {
            if (!currentPendingId) return;
            setButtons(false);
            try {
                const resp = await fetch("/api/" + verdict + "/" + sessionID, { method: "POST" });
                const data = await resp.json();
                if (!data.success) {
                    alert("Failed: " + data.error);
                }
            } catch (err) {
                alert("Error: " + err);
            }
            fetchPending();
        }

        fetchPending();
    </script>
</body>
</html>
"""

SETUP_HTML = """<!DOCTYPE html>
<html>
<head>
    <title>Approval Daemon Setup</title>
    <meta charset="utf-8">
    <style>
        body { font-family: -apple-system, system-ui, sans-serif; max-width: 600px; margin: 50px auto; padding: 20px; }
        .topic { font-family: monospace; background: #f5f5f5; padding: 10px; border-radius: 4px; word-break: break-all; }
        .btn { background: #4CAF50; color: white; border: none; padding: 12px 24px; border-radius: 4px;
               cursor: pointer; font-size: 16px; margin: 5px; }
        .btn:disabled { background: #ccc; cursor: not-allowed; }
        .btn-test { background: #2196F3; }
        .status.success { background: #e8f5e9; color: #2e7d32; padding: 15px; }
        .status.error { background: #ffebee; color: #c62828; padding: 15px; }
        .step { margin: 20px 0; padding: 15px; background: #fafafa; border-radius: 4px; }
    </style>
</head>
<body>
    <h1>Approval Daemon Setup</h1>

    <div class="step">
        <strong>1. Install the ntfy app</strong>
        <p>Download it from <a href="https://ntfy.sh" target="_blank">ntfy.sh</a> or your app store.</p>
    </div>

    <div class="step">
        <strong>2. Subscribe to your private topic</strong>
        <p>Open this link on your phone, or subscribe to the topic manually in the app:</p>
        <p><a href="__SUBSCRIBE_URL__">__SUBSCRIBE_URL__</a></p>
        <div class="topic">__TOPIC__</div>
    </div>

    <div class="step">
        <strong>3. Test the connection</strong>
        <button class="btn btn-test" onclick="testNotification()">Send Test Notification</button>
        <div id="status"></div>
    </div>

    <div class="step">
        <strong>4. Complete setup</strong>
        <button class="btn" id="complete-btn" onclick="completeSetup()" disabled>Complete Setup</button>
        <p><small>Button enables after a successful test</small></p>
    </div>

    <script>
        async function testNotification() {
            const status = document.getElementById("status");
            status.className = "status";
            status.textContent = "Sending test notification...";
            try {
                const resp = await fetch("/test", { method: "POST" });
                const data = await resp.json();
                if (data.success) {
                    status.className = "status success";
                    status.textContent = "Test notification sent! Check your phone.";
                    document.getElementById("complete-btn").disabled = false;
                } else {
                    status.className = "status error";
                    status.textContent = "Failed: " + data.error;
                }
            } catch (err) {
                status.className = "status error";
                status.textContent = "Error: " + err.message;
            }
        }

        async function completeSetup() {
            const resp = await fetch("/complete", { method: "POST" });
            const data = await resp.json();
            if (data.success) {
                document.body.innerHTML = "<h1>Setup Complete</h1><p>You can close this window. The daemon is now running.</p>";
            }
        }
    </script>
</body>
</html>
"""


def render_dashboard(session_id: str) -> str:
    return DASHBOARD_HTML.replace("__SESSION_ID__", html.escape(session_id))


def render_setup(topic: str, subscribe_url: str) -> str:
    return SETUP_HTML.replace("__SUBSCRIBE_URL__", html.escape(subscribe_url)).replace(
        "__TOPIC__", html.escape(topic)
    )
