from __future__ import annotations


def render_homepage(*, app_name: str, refetch_interval_s: float = 5.0) -> str:
    refetch_ms = int(refetch_interval_s * 1000)
    return f"""
<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>{app_name} Task Console</title>
  <link rel="preconnect" href="https://fonts.googleapis.com">
  <link rel="preconnect" href="https://fonts.gstatic.com" crossorigin>
  <link href="https://fonts.googleapis.com/css2?family=Manrope:wght@400;600;800&family=JetBrains+Mono:wght@400;600&display=swap" rel="stylesheet">
  <style>
    :root {{
      --paper: #f5f3ee;
      --sheet: #fffdf8;
      --text: #23201a;
      --dim: #736b5e;
      --rule: #e2ddd2;
      --brand: #2f5d50;
      --good: #2e7d4f;
      --bad: #b23a3a;
      --mono: "JetBrains Mono", ui-monospace, monospace;
    }}
    * {{ box-sizing: border-box; }}
    body {{
      margin: 0;
      font-family: "Manrope", system-ui, sans-serif;
      color: var(--text);
      background: linear-gradient(180deg, #e9efe9 0, var(--paper) 260px);
    }}
    header.topbar {{
      display: flex;
      flex-wrap: wrap;
      align-items: baseline;
      justify-content: space-between;
      gap: 10px;
      padding: 18px 24px 8px;
    }}
    header.topbar h1 {{ margin: 0; font-weight: 800; letter-spacing: -0.02em; }}
    header.topbar p {{ margin: 2px 0 0; color: var(--dim); }}
    .layout {{
      display: grid;
      grid-template-columns: 300px minmax(0, 1fr);
      gap: 18px;
      padding: 8px 24px 32px;
    }}
    @media (max-width: 960px) {{ .layout {{ grid-template-columns: 1fr; }} }}
    .panel {{
      background: var(--sheet);
      border: 1px solid var(--rule);
      border-radius: 10px;
      padding: 14px 16px;
      margin-bottom: 14px;
    }}
    .panel h2 {{ margin: 0 0 8px; font-size: 0.95rem; text-transform: uppercase; letter-spacing: 0.06em; color: var(--brand); }}
    .fields {{ display: flex; gap: 10px; flex-wrap: wrap; }}
    .fields > div {{ flex: 1 1 160px; }}
    label {{ display: block; font-size: 0.8rem; color: var(--dim); margin: 6px 0 4px; }}
    select, input {{
      width: 100%;
      padding: 7px 9px;
      border: 1px solid var(--rule);
      border-radius: 6px;
      background: #fff;
      font: 0.85rem var(--mono);
    }}
    .row {{ display: flex; gap: 6px; flex-wrap: wrap; margin-top: 10px; }}
    button {{
      padding: 5px 11px;
      border: 1px solid var(--brand);
      border-radius: 6px;
      background: var(--brand);
      color: #fff;
      font: 600 0.82rem "Manrope", sans-serif;
      cursor: pointer;
    }}
    button.ghost {{ background: transparent; color: var(--dim); border-color: var(--rule); }}
    #counts {{ display: flex; gap: 6px; flex-wrap: wrap; }}
    .pill {{ font: 0.75rem var(--mono); padding: 3px 8px; border-radius: 4px; background: #ebe7dd; }}
    table {{ width: 100%; border-collapse: collapse; font-size: 0.86rem; }}
    thead th {{ color: var(--dim); font-weight: 600; text-align: left; padding: 6px; border-bottom: 2px solid var(--rule); }}
    tbody td {{ padding: 7px 6px; border-bottom: 1px solid var(--rule); vertical-align: middle; }}
    td.mono {{ font-family: var(--mono); }}
    td.ops button {{ margin: 0 4px 4px 0; }}
    .badge {{ font: 600 0.74rem var(--mono); padding: 2px 7px; border-radius: 4px; background: #ebe7dd; }}
    .badge.s-READY {{ background: #dde9f7; }}
    .badge.s-RUNNING {{ background: #fbe7b5; }}
    .badge.s-COMPLETED {{ background: #d8efdf; }}
    .badge.s-CONFIRMED {{ background: #bfe3c9; }}
    .badge.s-FAILED, .badge.s-REJECTED {{ background: #f6d5d2; }}
    .status {{ margin: 8px 0 0; font: 0.8rem var(--mono); color: var(--dim); }}
    .status.ok {{ color: var(--good); }}
    .status.error {{ color: var(--bad); }}
    ul.catalog {{ list-style: none; margin: 8px 0 0; padding: 0; font-size: 0.84rem; }}
    ul.catalog li {{ display: flex; justify-content: space-between; align-items: center; padding: 4px 0; border-top: 1px solid var(--rule); }}
    ul.catalog a {{ margin-right: 6px; color: var(--brand); }}
  </style>
</head>
<body>
  <header class="topbar">
    <div>
      <h1>Task Console</h1>
      <p>Queue browser automation tasks, simulate runs and review results.</p>
    </div>
    <div id="counts"></div>
  </header>

  <div class="layout">
    <aside>
      <section class="panel">
        <h2>Scripts</h2>
        <label for="scriptFile">Upload .js or .ts</label>
        <input id="scriptFile" type="file" accept=".js,.ts">
        <ul id="scriptList" class="catalog"></ul>
      </section>
      <section class="panel">
        <h2>Profiles</h2>
        <label for="profileFile">Upload .json</label>
        <input id="profileFile" type="file" accept=".json">
        <ul id="profileList" class="catalog"></ul>
      </section>
      <section class="panel">
        <h2>Workers</h2>
        <label for="workerName">Username</label>
        <input id="workerName" autocomplete="off">
        <label for="workerPassword">Password</label>
        <input id="workerPassword" type="password" autocomplete="new-password">
        <div class="row"><button id="workerBtn">Add worker</button></div>
        <ul id="workerList" class="catalog"></ul>
      </section>
    </aside>

    <main>
      <section class="panel">
        <h2>New task</h2>
        <div class="fields">
          <div><label for="workerSelect">Worker</label><select id="workerSelect"></select></div>
          <div><label for="profileSelect">Profile</label><select id="profileSelect"></select></div>
          <div><label for="scriptSelect">Script</label><select id="scriptSelect"></select></div>
        </div>
        <div class="row">
          <button id="createBtn">Create</button>
          <button id="createReadyBtn" class="ghost">Create as READY</button>
        </div>
        <p id="statusText" class="status">Ready.</p>
      </section>

      <section class="panel">
        <h2>Tasks</h2>
        <table>
          <thead><tr><th>#</th><th>Status</th><th>Worker</th><th>Profile</th><th>Script</th><th>Respond</th><th></th></tr></thead>
          <tbody id="taskRows"></tbody>
        </table>
      </section>
    </main>
  </div>

  <script>
    const REFETCH_MS = {refetch_ms};
    const ACTIONS = {{
      NEW: ["activate"],
      READY: ["deactivate", "run"],
      RUNNING: ["stop"],
      COMPLETED: ["confirm", "reject"],
      CONFIRMED: ["reject"],
      REJECTED: ["confirm"],
      FAILED: ["run"],
    }};
    const statusText = document.getElementById("statusText");
    const catalog = {{ workers: [], profiles: [], scripts: [] }};

    function setStatus(text, kind = "") {{
      statusText.textContent = text;
      statusText.className = "status";
      if (kind) statusText.classList.add(kind);
    }}

    async function request(url, options = {{}}) {{
      const res = await fetch(url, options);
      if (res.status === 204) return null;
      const data = await res.json();
      if (!res.ok) throw new Error(data.error || JSON.stringify(data));
      return data;
    }}

    function sendJson(url, method, body) {{
      return request(url, {{
        method,
        headers: {{"Content-Type": "application/json"}},
        body: body ? JSON.stringify(body) : undefined,
      }});
    }}

    function escapeHtml(value) {{
      const span = document.createElement("span");
      span.textContent = String(value);
      return span.innerHTML;
    }}

    function nameOf(items, id, key) {{
      if (id === null || id === undefined) return "(worker default)";
      const found = items.find((item) => item.id === id);
      return found ? escapeHtml(found[key]) : `#${{id}}`;
    }}

    function fillSelect(select, items, key, allowEmpty) {{
      select.innerHTML = "";
      if (allowEmpty) select.add(new Option("(worker default)", ""));
      for (const item of items) select.add(new Option(item[key], item.id));
    }}

    function renderCatalog(listId, items, key, kind, downloadable) {{
      const list = document.getElementById(listId);
      list.innerHTML = "";
      for (const item of items) {{
        const li = document.createElement("li");
        const label = document.createElement("span");
        label.textContent = item[key];
        li.appendChild(label);
        const tools = document.createElement("span");
        if (downloadable) {{
          const link = document.createElement("a");
          link.href = `/api/${{kind}}/${{item.id}}/download`;
          link.textContent = "download";
          tools.appendChild(link);
        }}
        const del = document.createElement("button");
        del.className = "ghost";
        del.textContent = "x";
        del.onclick = () => act(() => request(`/api/${{kind}}/${{item.id}}`, {{ method: "DELETE" }}), "Deleted.");
        tools.appendChild(del);
        li.appendChild(tools);
        list.appendChild(li);
      }}
    }}

    async function loadCatalog() {{
      const [workers, profiles, scripts] = await Promise.all([
        request("/api/workers"), request("/api/profiles"), request("/api/scripts"),
      ]);
      Object.assign(catalog, {{ workers, profiles, scripts }});
      fillSelect(document.getElementById("workerSelect"), workers, "username", false);
      fillSelect(document.getElementById("profileSelect"), profiles, "name", true);
      fillSelect(document.getElementById("scriptSelect"), scripts, "name", false);
      renderCatalog("workerList", workers, "username", "workers", false);
      renderCatalog("profileList", profiles, "name", "profiles", true);
      renderCatalog("scriptList", scripts, "name", "scripts", true);
    }}

    async function loadTasks() {{
      const [tasks, shadows, counts] = await Promise.all([
        request("/api/tasks"), request("/api/simulator/tasks"), request("/api/tasks/stats"),
      ]);
      const local = new Map(shadows.map((shadow) => [shadow.task_id, shadow]));
      const rows = document.getElementById("taskRows");
      rows.innerHTML = "";
      for (const task of tasks) {{
        const shadow = local.get(task.id);
        const status = shadow ? shadow.status : task.status;
        const tr = document.createElement("tr");
        tr.innerHTML = `
          <td class="mono">${{task.id}}</td>
          <td><span class="badge s-${{status}}">${{status}}</span>${{shadow && shadow.last_error ? " !" : ""}}</td>
          <td>${{nameOf(catalog.workers, task.worker_id, "username")}}</td>
          <td>${{nameOf(catalog.profiles, task.profile_id, "name")}}</td>
          <td>${{nameOf(catalog.scripts, task.script_id, "name")}}</td>
          <td class="mono">${{escapeHtml(task.respond || "")}}</td>`;
        const cell = document.createElement("td");
        cell.className = "ops";
        for (const action of ACTIONS[status] || []) {{
          const btn = document.createElement("button");
          btn.textContent = action;
          btn.onclick = () => act(() => sendJson(`/api/tasks/${{task.id}}/${{action}}`, "POST"), `${{action}} sent.`);
          cell.appendChild(btn);
        }}
        const del = document.createElement("button");
        del.className = "ghost";
        del.textContent = "delete";
        del.onclick = () => act(() => request(`/api/tasks/${{task.id}}`, {{ method: "DELETE" }}), "Task deleted.");
        cell.appendChild(del);
        tr.appendChild(cell);
        rows.appendChild(tr);
      }}
      const countBox = document.getElementById("counts");
      countBox.innerHTML = "";
      for (const [key, value] of Object.entries(counts)) {{
        const pill = document.createElement("span");
        pill.className = "pill";
        pill.textContent = `${{key}} ${{value}}`;
        countBox.appendChild(pill);
      }}
    }}

    async function act(fn, message) {{
      try {{
        await fn();
        setStatus(message, "ok");
      }} catch (err) {{
        setStatus(String(err.message || err), "error");
      }}
      await refresh();
    }}

    async function refresh() {{
      try {{
        await loadCatalog();
        await loadTasks();
      }} catch (err) {{
        setStatus(String(err.message || err), "error");
      }}
    }}

    async function createTask(status) {{
      const profile = document.getElementById("profileSelect").value;
      await sendJson("/api/tasks", "POST", {{
        worker_id: Number(document.getElementById("workerSelect").value),
        script_id: Number(document.getElementById("scriptSelect").value),
        profile_id: profile === "" ? null : Number(profile),
        status,
      }});
    }}

    function upload(inputId, kind) {{
      const input = document.getElementById(inputId);
      input.addEventListener("change", () => {{
        if (!input.files.length) return;
        const form = new FormData();
        form.append("file", input.files[0]);
        input.value = "";
        act(() => request(`/api/${{kind}}`, {{ method: "POST", body: form }}), "Uploaded.");
      }});
    }}

    document.getElementById("createBtn").addEventListener("click", () => act(() => createTask("NEW"), "Task created."));
    document.getElementById("createReadyBtn").addEventListener("click", () => act(() => createTask("READY"), "Task queued."));
    document.getElementById("workerBtn").addEventListener("click", () => act(() => sendJson("/api/workers", "POST", {{
      username: document.getElementById("workerName").value.trim(),
      password: document.getElementById("workerPassword").value,
    }}), "Worker added."));
    upload("scriptFile", "scripts");
    upload("profileFile", "profiles");

    refresh();
    setInterval(loadTasks, REFETCH_MS);
  </script>
</body>
</html>
"""
