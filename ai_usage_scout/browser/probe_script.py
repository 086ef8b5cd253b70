"""
In-page extraction routine evaluated by ScriptPageProber.

The routine only collects raw structures; interpretation happens in
ai_usage_scout.core.normalizer. It may scroll once per page load to force
the lazily rendered credits history into the DOM; the guard flag lives on
window, so it resets whenever the page navigates.
"""

PROBE_SCRIPT = r"""
(() => {
  const textOf = (el) => {
    const raw = el && (el.innerText || el.textContent) ? String(el.innerText || el.textContent) : '';
    return raw.trim();
  };
  const hexColor = (color) => {
    if (!color) return null;
    const c = String(color).trim().toLowerCase();
    if (c.startsWith('#')) {
      return c.length === 4 ? '#' + c[1] + c[1] + c[2] + c[2] + c[3] + c[3] : c;
    }
    const m = c.match(/^rgba?\(([^)]+)\)$/);
    if (!m) return c;
    const parts = m[1].split(',').map(x => parseFloat(x.trim())).filter(Number.isFinite);
    if (parts.length < 3) return c;
    return '#' + parts.slice(0, 3)
      .map(n => Math.max(0, Math.min(255, Math.round(n))).toString(16).padStart(2, '0'))
      .join('');
  };
  const reactProps = (el) => {
    if (!el) return null;
    try {
      const keys = Object.keys(el);
      const propsKey = keys.find(k => k.startsWith('__reactProps$'));
      if (propsKey) return el[propsKey] || null;
      const fiberKey = keys.find(k => k.startsWith('__reactFiber$'));
      const fiber = fiberKey ? el[fiberKey] : null;
      return (fiber && (fiber.memoizedProps || fiber.pendingProps)) || null;
    } catch (e) {
      return null;
    }
  };
  const isBarMeta = (p) => p && p.payload && (p.dataKey || p.name || p.value !== undefined);
  const barMeta = (el) => {
    const direct = reactProps(el);
    if (isBarMeta(direct)) return direct;
    try {
      const keys = Object.keys(el || {});
      const fiberKey = keys.find(k => k.startsWith('__reactFiber$'));
      let cur = fiberKey ? el[fiberKey] : null;
      for (let i = 0; i < 10 && cur; i++) {
        const props = cur.memoizedProps || cur.pendingProps;
        if (isBarMeta(props)) return props;
        cur = cur.return || null;
      }
    } catch (e) {}
    return null;
  };
  const dayOf = (payload) => {
    if (!payload || typeof payload !== 'object') return null;
    for (const k of ['day', 'date', 'name', 'label', 'x', 'time', 'timestamp']) {
      const v = payload[k];
      if (typeof v === 'string') {
        const iso = v.trim().match(/^(\d{4}-\d{2}-\d{2})/);
        if (iso) return iso[1];
      }
      if (typeof v === 'number' && Number.isFinite(v) && ['x', 'time', 'timestamp'].includes(k)) {
        const d = new Date(v);
        if (!isNaN(d.getTime())) return d.toISOString().slice(0, 10);
      }
    }
    return null;
  };

  const chart = (() => {
    if (window.__usageScoutChart) return { aggregates: window.__usageScoutChart, debug: null };
    try {
      const section = Array.from(document.querySelectorAll('section')).find(s => {
        const h = s.querySelector('h2');
        return h && textOf(h).toLowerCase().startsWith('usage breakdown');
      });
      if (!section) return { aggregates: null, debug: null };
      const legend = {};
      for (const item of Array.from(section.querySelectorAll('div[title]'))) {
        const title = String(item.getAttribute('title') || '').trim();
        const swatch = item.querySelector('div[style*="background-color"]');
        const hex = hexColor(swatch && swatch.style ? swatch.style.backgroundColor : null);
        if (title && hex) legend[hex] = title;
      }
      const bars = Array.from(section.querySelectorAll('g.recharts-bar-rectangle path.recharts-rectangle'));
      const totals = {};
      const add = (day, service, value) => {
        if (!totals[day]) totals[day] = {};
        totals[day][service] = (totals[day][service] || 0) + value;
      };
      for (const bar of bars) {
        const meta = barMeta(bar) || barMeta(bar.parentElement);
        if (!meta) continue;
        const day = dayOf(meta.payload);
        if (!day) continue;
        const values = meta.payload.values;
        if (values && typeof values === 'object') {
          for (const [key, v] of Object.entries(values)) {
            if (typeof v === 'number' && Number.isFinite(v) && v > 0) add(day, key, v);
          }
          continue;
        }
        let value = typeof meta.value === 'number' ? meta.value : parseFloat(String(meta.value || '').replace(/,/g, ''));
        if (!Number.isFinite(value)) continue;
        const fill = hexColor(meta.fill || bar.getAttribute('fill'));
        const service = (fill && legend[fill]) || (typeof meta.name === 'string' ? meta.name : null);
        if (service) add(day, service, value);
      }
      if (Object.keys(totals).length === 0) {
        return { aggregates: null, debug: JSON.stringify({ barCount: bars.length, legendCount: Object.keys(legend).length }) };
      }
      window.__usageScoutChart = totals;
      return { aggregates: totals, debug: null };
    } catch (e) {
      return { aggregates: null, debug: String(e) };
    }
  })();

  const rawText = document.body ? String(document.body.innerText || '').trim() : '';
  const lower = rawText.toLowerCase();
  const location = window.location ? String(window.location.href || '') : '';
  const title = String(document.title || '').toLowerCase();
  const workspacePicker = rawText.includes('Select a workspace');
  const challenge =
    title.includes('just a moment') ||
    lower.includes('checking your browser') ||
    lower.includes('cloudflare');
  const hasAuthInputs = !!document.querySelector('input[type="email"], input[type="password"], input[name="username"]');
  const loginCTA = ['sign in', 'log in', 'continue with google', 'continue with apple', 'continue with microsoft']
    .some(s => lower.includes(s));
  const loginRequired =
    location.includes('/auth/') ||
    location.includes('/login') ||
    (hasAuthInputs && loginCTA) ||
    (!hasAuthInputs && loginCTA && location.includes('chatgpt.com'));

  const viewport = typeof window.innerHeight === 'number' ? window.innerHeight : 0;
  const scrollHeight = document.documentElement ? (document.documentElement.scrollHeight || 0) : 0;
  let sectionHeaderPresent = false;
  let sectionHeaderInViewport = false;
  let didAutoScroll = false;
  let tableRows = [];
  try {
    const header = Array.from(document.querySelectorAll('h1,h2,h3'))
      .find(h => textOf(h).toLowerCase() === 'credits usage history');
    if (header) {
      sectionHeaderPresent = true;
      const rect = header.getBoundingClientRect();
      sectionHeaderInViewport = rect.top >= 0 && rect.top <= viewport;
      const container = header.closest('section') || header.parentElement || document;
      const scope = container.querySelector('table') || container;
      tableRows = Array.from(scope.querySelectorAll('tbody tr'))
        .map(tr => Array.from(tr.querySelectorAll('td')).map(textOf))
        .filter(r => r.length >= 3);
      if (tableRows.length === 0 && !window.__usageScoutDidScroll) {
        window.__usageScoutDidScroll = true;
        header.scrollIntoView({ block: 'start', inline: 'nearest' });
        if (sectionHeaderInViewport) window.scrollBy(0, Math.max(220, viewport * 0.6));
        didAutoScroll = true;
      }
    } else if (!window.__usageScoutDidScroll && scrollHeight > viewport * 1.5) {
      window.__usageScoutDidScroll = true;
      window.scrollTo(0, Math.max(0, scrollHeight - viewport - 40));
      didAutoScroll = true;
    }
  } catch (e) {}

  const purchaseLinks = [];
  try {
    const balanceLabel = Array.from(document.querySelectorAll('h1,h2,h3,div,span,p')).find(n => {
      const t = textOf(n).toLowerCase();
      return t === 'credits remaining' || (t.length < 60 && t.includes('credits') && t.includes('remaining'));
    });
    let balanceScope = null;
    for (let cur = balanceLabel, i = 0; cur && i < 6; cur = cur.parentElement, i++) {
      if (cur.querySelector('button, a')) { balanceScope = cur; break; }
    }
    const hrefOf = (el) => {
      const anchor = el.tagName.toLowerCase() === 'a' ? el : el.closest('a');
      const props = reactProps(el) || reactProps(anchor) || {};
      const fromProps = ['href', 'to', 'url', 'link', 'destination', 'navigateTo']
        .map(k => props[k]).find(v => typeof v === 'string' && v.trim());
      return (anchor && anchor.getAttribute('href')) ||
        el.getAttribute('data-href') || el.getAttribute('data-url') ||
        el.getAttribute('data-link') || el.getAttribute('data-destination') ||
        fromProps || null;
    };
    for (const el of Array.from(document.querySelectorAll('a, button'))) {
      const label = textOf(el) || el.getAttribute('aria-label') || el.getAttribute('title') || '';
      const href = hrefOf(el);
      if (!href) continue;
      if (!/credit|add more|top.?up|billing/i.test(label + ' ' + href)) continue;
      purchaseLinks.push({
        label: label.slice(0, 120),
        href: String(href).trim(),
        nearBalance: !!(balanceScope && balanceScope.contains(el))
      });
      if (purchaseLinks.length >= 25) break;
    }
  } catch (e) {}

  let signedInIdentity = null;
  try {
    const props = window.__NEXT_DATA__ && window.__NEXT_DATA__.props && window.__NEXT_DATA__.props.pageProps;
    signedInIdentity = (props && props.user && props.user.email) ||
      (props && props.session && props.session.user && props.session.user.email) || null;
  } catch (e) {}
  if (!signedInIdentity) {
    const found = rawText.match(/[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}/i);
    if (found) signedInIdentity = found[0].toLowerCase();
  }

  return {
    location,
    loginRequired,
    workspacePicker,
    challenge,
    rawText,
    rawMarkup: document.documentElement ? String(document.documentElement.outerHTML || '') : '',
    signedInIdentity,
    tableRows,
    chartAggregates: chart.aggregates,
    chartDebug: chart.debug,
    scroll: { y: window.scrollY || 0, height: scrollHeight, viewport },
    sectionHeaderPresent,
    sectionHeaderInViewport,
    didAutoScroll,
    purchaseLinks
  };
})()
"""
