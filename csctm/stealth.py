"""
Fingerprint evasion injected into every scripted page before site scripts run.
"""

from __future__ import annotations

# Runs in every frame before page scripts. Each patch is wrapped so one failing
# property does not abort the rest.
STEALTH_INIT_SCRIPT = r"""
(() => {
  const patch = (fn) => { try { fn(); } catch (e) {} };

  patch(() => {
    Object.defineProperty(Navigator.prototype, 'webdriver', { get: () => undefined, configurable: true });
    delete Object.getPrototypeOf(navigator).webdriver;
  });

  patch(() => {
    Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });
    Object.defineProperty(navigator, 'platform', { get: () => 'MacIntel' });
    Object.defineProperty(navigator, 'hardwareConcurrency', { get: () => 8 });
    Object.defineProperty(navigator, 'deviceMemory', { get: () => 8 });
    Object.defineProperty(navigator, 'maxTouchPoints', { get: () => 0 });
  });

  patch(() => {
    const fakePlugins = ['PDF Viewer', 'Chrome PDF Viewer', 'Chromium PDF Viewer'].map((name) => ({
      name, filename: 'internal-pdf-viewer', description: 'Portable Document Format', length: 1,
    }));
    Object.defineProperty(navigator, 'plugins', { get: () => fakePlugins });
  });

  patch(() => {
    if (!window.chrome) { window.chrome = {}; }
    if (!window.chrome.runtime) { window.chrome.runtime = {}; }
  });

  patch(() => {
    const query = window.navigator.permissions.query.bind(window.navigator.permissions);
    window.navigator.permissions.query = (params) =>
      params && params.name === 'notifications'
        ? Promise.resolve({ state: Notification.permission })
        : query(params);
  });

  patch(() => {
    Object.defineProperty(screen, 'width', { get: () => 1440 });
    Object.defineProperty(screen, 'height', { get: () => 900 });
    Object.defineProperty(screen, 'availWidth', { get: () => 1440 });
    Object.defineProperty(screen, 'availHeight', { get: () => 875 });
    Object.defineProperty(screen, 'colorDepth', { get: () => 24 });
    Object.defineProperty(window, 'outerWidth', { get: () => window.innerWidth });
    Object.defineProperty(window, 'outerHeight', { get: () => window.innerHeight + 85 });
  });

  patch(() => {
    if (performance && performance.memory) {
      Object.defineProperty(performance, 'memory', {
        get: () => ({ jsHeapSizeLimit: 4294705152, totalJSHeapSize: 35000000, usedJSHeapSize: 25000000 }),
      });
    }
  });

  patch(() => {
    const noise = () => Math.floor(Math.random() * 3) - 1;
    const toDataURL = HTMLCanvasElement.prototype.toDataURL;
    HTMLCanvasElement.prototype.toDataURL = function (...args) {
      const ctx = this.getContext('2d');
      if (ctx && this.width && this.height) {
        const image = ctx.getImageData(0, 0, this.width, this.height);
        for (let i = 0; i < image.data.length; i += 97) { image.data[i] = image.data[i] + noise(); }
        ctx.putImageData(image, 0, 0);
      }
      return toDataURL.apply(this, args);
    };
  });

  patch(() => {
    const spoof = (proto) => {
      const getParameter = proto.getParameter;
      proto.getParameter = function (parameter) {
        if (parameter === 37445) { return 'Intel Inc.'; }
        if (parameter === 37446) { return 'Intel Iris OpenGL Engine'; }
        return getParameter.call(this, parameter);
      };
      const readPixels = proto.readPixels;
      proto.readPixels = function (...args) {
        readPixels.apply(this, args);
        const pixels = args[6];
        if (pixels && pixels.length) { pixels[0] = pixels[0] ^ 1; }
      };
    };
    if (window.WebGLRenderingContext) { spoof(WebGLRenderingContext.prototype); }
    if (window.WebGL2RenderingContext) { spoof(WebGL2RenderingContext.prototype); }
  });

  patch(() => {
    for (const key of Object.keys(window)) {
      if (/^cdc_|^\$cdc_|^__playwright|^__pw/.test(key)) { delete window[key]; }
    }
  });
})();
"""

# Serializes the composed DOM, inlining open shadow roots as declarative
# <template shadowrootmode="open"> children so the snapshot can be walked offline.
SNAPSHOT_SCRIPT = r"""
() => {
  const VOID = new Set(['area', 'base', 'br', 'col', 'embed', 'hr', 'img', 'input',
    'link', 'meta', 'source', 'track', 'wbr']);
  const SKIP = new Set(['script', 'style', 'noscript', 'template']);
  const escText = (s) => s.replace(/&/g, '&amp;').replace(/</g, '&lt;').replace(/>/g, '&gt;');
  const escAttr = (s) => s.replace(/&/g, '&amp;').replace(/"/g, '&quot;');
  const out = [];
  const walkChildren = (parent) => { for (const child of parent.childNodes) { walk(child); } };
  const walk = (node) => {
    if (node.nodeType === Node.TEXT_NODE) { out.push(escText(node.data)); return; }
    if (node.nodeType !== Node.ELEMENT_NODE) { return; }
    const tag = node.localName;
    if (SKIP.has(tag)) { return; }
    out.push('<' + tag);
    for (const attr of node.attributes) { out.push(' ' + attr.name + '="' + escAttr(attr.value) + '"'); }
    out.push('>');
    if (VOID.has(tag)) { return; }
    if (node.shadowRoot) {
      out.push('<template shadowrootmode="open">');
      walkChildren(node.shadowRoot);
      out.push('</template>');
    }
    walkChildren(node);
    out.push('</' + tag + '>');
  };
  walk(document.documentElement);
  return '<!DOCTYPE html>' + out.join('');
}
"""
