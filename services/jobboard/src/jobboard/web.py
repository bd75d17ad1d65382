from __future__ import annotations

INDEX_HTML = """
<!doctype html>
<html lang=\"en\">
  <head>
    <meta charset=\"UTF-8\" />
    <meta name=\"viewport\" content=\"width=device-width, initial-scale=1.0\" />
    <title>Job Board</title>
    <style>
      body { font-family: ui-sans-serif, system-ui, sans-serif; margin: 2rem; max-width: 1100px; }
      .grid { display: grid; grid-template-columns: 240px 1fr; gap: 1rem; }
      .panel { border: 1px solid #ddd; border-radius: 8px; padding: 1rem; }
      input, select { width: 100%; margin: 0.35rem 0; padding: 0.45rem; }
      button { padding: 0.45rem 0.8rem; cursor: pointer; margin: 0.2rem; }
      .row { border-bottom: 1px solid #eee; padding: 0.6rem 0; }
      .active { font-weight: bold; }
      .error { color: #b00020; }
      @media (max-width: 900px) { .grid { grid-template-columns: 1fr; } }
    </style>
  </head>
  <body>
    <h1>Job Board</h1>

    <div class=\"panel\">
      <select id=\"realm\">
        <option value=\"seeker\">Job seeker</option>
        <option value=\"employer\">Employer</option>
      </select>
      <input id=\"username\" placeholder=\"Username\" />
      <input id=\"password\" type=\"password\" placeholder=\"Password\" />
      <button onclick=\"signIn()\">Sign In</button>
      <button onclick=\"signOut()\">Sign Out</button>
      <span id=\"session\"></span>
    </div>

    <div class=\"grid\">
      <div class=\"panel\">
        <input id=\"q\" placeholder=\"Search by job title...\" oninput=\"loadJobs(1)\" />
        <input id=\"company\" placeholder=\"Company\" oninput=\"loadJobs(1)\" />
        <input id=\"location\" placeholder=\"State code, e.g. CA\" oninput=\"loadJobs(1)\" />
        <input id=\"min_salary\" type=\"number\" placeholder=\"Min salary\" />
        <input id=\"max_salary\" type=\"number\" placeholder=\"Max salary\" />
        <select id=\"experience_level\">
          <option value=\"\">All types</option>
          <option value=\"Entry level\">Entry</option>
          <option value=\"Mid level\">Mid</option>
          <option value=\"Senior level\">Senior</option>
        </select>
        <button onclick=\"loadJobs(1)\">Apply Filters</button>
        <button onclick=\"resetFilters()\">Reset Filters</button>
        <button onclick=\"loadSaved()\">Saved Jobs</button>
      </div>
      <div class=\"panel\">
        <div id=\"status\"></div>
        <div id=\"rows\"></div>
        <div id=\"pager\"></div>
      </div>
    </div>

    <script>
      const FILTER_IDS = ['company', 'location', 'min_salary', 'max_salary', 'experience_level'];

      function browsingSession() {
        let id = sessionStorage.getItem('browsing_session');
        if (!id) {
          id = crypto.randomUUID();
          sessionStorage.setItem('browsing_session', id);
        }
        return id;
      }

      async function callApi(path, method = 'GET', payload = null) {
        const headers = {
          'Content-Type': 'application/json',
          'x-browsing-session': browsingSession()
        };
        const token = sessionStorage.getItem('session_token');
        if (token) headers['x-session-token'] = token;
        const response = await fetch(path, {
          method,
          headers,
          body: payload === null ? null : JSON.stringify(payload)
        });
        const data = await response.json();
        if (!response.ok) throw new Error(typeof data.detail === 'string' ? data.detail : JSON.stringify(data.detail));
        return data;
      }

      // Listing text comes from the upstream source; never parse it as markup.
      function textElement(tag, text) {
        const el = document.createElement(tag);
        el.textContent = text;
        return el;
      }

      function setStatus(text, isError = false) {
        const el = document.getElementById('status');
        el.textContent = text;
        el.className = isError ? 'error' : '';
      }

      async function signIn() {
        const realm = document.getElementById('realm').value;
        try {
          const data = await callApi(`/auth/${realm}/sign-in`, 'POST', {
            username: document.getElementById('username').value.trim(),
            password: document.getElementById('password').value
          });
          sessionStorage.setItem('session_token', data.token);
          document.getElementById('session').textContent = `${data.user.username} (${data.realm})`;
          loadJobs(1);
        } catch (err) {
          setStatus(err.message, true);
        }
      }

      async function signOut() {
        await callApi('/auth/sign-out', 'POST');
        sessionStorage.removeItem('session_token');
        document.getElementById('session').textContent = '';
        document.getElementById('rows').innerHTML = '';
        document.getElementById('pager').innerHTML = '';
      }

      function resetFilters() {
        FILTER_IDS.forEach(id => { document.getElementById(id).value = ''; });
        loadJobs(1);
      }

      function saveButton(job) {
        const button = document.createElement('button');
        button.textContent = 'Save Job';
        button.onclick = async () => {
          button.disabled = true;
          button.textContent = 'Saving...';
          try {
            await callApi('/api/saved-jobs', 'POST', {
              id: job.id,
              title: job.title,
              company: job.company,
              location: job.location,
              salary: job.salary,
              url: job.posting_url,
              application_url: job.application_url
            });
            button.textContent = 'Saved';
          } catch (err) {
            button.textContent = 'Save Job';
            button.disabled = false;
            setStatus(err.message, true);
          }
        };
        return button;
      }

      function renderPager(data) {
        const pager = document.getElementById('pager');
        pager.innerHTML = '';
        const add = (label, page, active = false) => {
          const button = document.createElement('button');
          button.textContent = label;
          if (active) button.className = 'active';
          button.onclick = () => loadJobs(page);
          pager.appendChild(button);
        };
        const window = data.window;
        if (window.previous_window_page) add('«', window.previous_window_page);
        window.pages.forEach(page => add(String(page), page, page === data.page));
        if (window.next_window_page) add('»', window.next_window_page);
      }

      async function loadJobs(page) {
        const params = new URLSearchParams({ q: document.getElementById('q').value, page });
        FILTER_IDS.forEach(id => params.set(id, document.getElementById(id).value));
        setStatus('Loading jobs. Please be patient!');
        try {
          const data = await callApi(`/api/jobs?${params}`);
          setStatus(`${data.total_items} jobs`);
          const rows = document.getElementById('rows');
          rows.innerHTML = '';
          data.items.forEach(job => {
            const row = document.createElement('div');
            row.className = 'row';
            row.appendChild(textElement('h4', job.title || ''));
            row.appendChild(textElement('p', `${job.company || ''} - ${job.location || ''}`));
            if (job.salary) row.appendChild(textElement('p', job.salary));
            row.appendChild(saveButton(job));
            rows.appendChild(row);
          });
          renderPager(data);
        } catch (err) {
          setStatus(`Error: ${err.message}`, true);
        }
      }

      async function loadSaved() {
        try {
          const data = await callApi('/api/saved-jobs?order=recent');
          const rows = document.getElementById('rows');
          rows.innerHTML = '';
          document.getElementById('pager').innerHTML = '';
          if (data.saved_jobs.length === 0) {
            setStatus("You haven't saved any jobs yet.");
            return;
          }
          setStatus('Saved Jobs');
          data.saved_jobs.forEach(record => {
            const row = document.createElement('div');
            row.className = 'row';
            row.appendChild(textElement('h4', record.job_data.title || 'Untitled Job'));
            row.appendChild(textElement('p', record.job_data.company || 'Unknown Company'));
            row.appendChild(textElement('small', `Saved on ${new Date(record.saved_at).toLocaleDateString()}`));
            const remove = document.createElement('button');
            remove.textContent = 'Remove';
            remove.onclick = async () => {
              try {
                await callApi(`/api/saved-jobs/${encodeURIComponent(record.job_id)}`, 'DELETE');
                row.remove();
              } catch (err) {
                setStatus(err.message, true);
              }
            };
            row.appendChild(remove);
            rows.appendChild(row);
          });
        } catch (err) {
          setStatus(err.message, true);
        }
      }
    </script>
  </body>
</html>
"""
