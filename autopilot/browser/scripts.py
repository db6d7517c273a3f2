"""
在页面内执行的 JavaScript 片段

每个片段都是接收单个参数的箭头函数，通过 TabController.run_in_page 执行。
选择器合成不在页面里做：ELEMENTS 只返回 tag / id / class / 祖先链，
由 autopilot.perception.inspector.build_selector 统一生成。
"""

# 页面标题、地址、正文与截断后的 HTML
PAGE_CONTENT = """
() => ({
    title: document.title,
    url: window.location.href,
    text: document.body ? document.body.innerText : '',
    html: document.documentElement.outerHTML.substring(0, 50000),
})
"""

# 页面中所有 http(s) 链接
PAGE_LINKS = """
() => Array.from(document.querySelectorAll('a[href]'))
    .map(a => ({ url: a.href, text: a.textContent.trim(), title: a.title || '' }))
    .filter(link => link.url.startsWith('http'))
"""

# 按 selectors 提取数据：title / text / links / images / custom
EXTRACT_DATA = """
(selectors) => {
    const data = {};
    if (selectors.title) {
        data.title = document.title;
    }
    if (selectors.text) {
        data.text = document.body ? document.body.innerText : '';
    }
    if (selectors.links) {
        data.links = Array.from(document.querySelectorAll('a[href]'))
            .map(a => ({ url: a.href, text: a.textContent.trim() }));
    }
    if (selectors.images) {
        data.images = Array.from(document.querySelectorAll('img[src]'))
            .map(img => ({ url: img.src, alt: img.alt }));
    }
    if (selectors.custom) {
        data.custom = {};
        for (const [key, selector] of Object.entries(selectors.custom)) {
            data.custom[key] = Array.from(document.querySelectorAll(selector))
                .map(el => el.textContent.trim());
        }
    }
    return data;
}
"""

# 可交互元素的原始描述（按钮、输入框、前 N 个链接）
ELEMENTS = """
(linkLimit) => {
    const describe = (el) => {
        const ancestors = [];
        let node = el.parentElement;
        while (node && node.nodeType === Node.ELEMENT_NODE) {
            ancestors.push({
                tag: node.tagName.toLowerCase(),
                id: node.id || '',
                class_name: typeof node.className === 'string' ? node.className : '',
            });
            node = node.parentElement;
        }
        const rect = el.getBoundingClientRect();
        return {
            tag: el.tagName.toLowerCase(),
            id: el.id || '',
            class_name: typeof el.className === 'string' ? el.className : '',
            ancestors: ancestors,
            bounds: { x: rect.x, y: rect.y, width: rect.width, height: rect.height },
        };
    };
    const buttons = document.querySelectorAll(
        'button, [role="button"], input[type="button"], input[type="submit"]');
    const inputs = document.querySelectorAll('input, textarea, select');
    const links = Array.from(document.querySelectorAll('a[href]')).slice(0, linkLimit);
    return {
        title: document.title,
        url: window.location.href,
        buttons: Array.from(buttons).map((el, i) => Object.assign(describe(el), {
            index: i,
            text: el.textContent.trim() || el.value || el.getAttribute('aria-label') || '',
        })),
        inputs: Array.from(inputs).map((el, i) => Object.assign(describe(el), {
            index: i,
            type: el.type || el.tagName.toLowerCase(),
            placeholder: el.placeholder || '',
            name: el.name || '',
        })),
        links: links.map((el, i) => Object.assign(describe(el), {
            index: i,
            text: el.textContent.trim(),
            href: el.href,
        })),
    };
}
"""

# 原子动作：click（选择器或坐标）/ type / scroll / wait
EXECUTE_ACTION = """
(action) => {
    try {
        switch (action.type) {
            case 'click': {
                const target = action.target !== undefined && action.target !== null
                    ? action.target : action.selector;
                if (typeof target === 'string') {
                    const element = document.querySelector(target);
                    if (!element) {
                        return { success: false, error: 'Element not found', selector: target };
                    }
                    element.click();
                    return { success: true, element: target };
                }
                if (target && target.x !== undefined && target.y !== undefined) {
                    const element = document.elementFromPoint(target.x, target.y);
                    if (!element) {
                        return { success: false, error: 'No element at coordinates' };
                    }
                    element.click();
                    return { success: true, coordinates: target };
                }
                return { success: false, error: 'Click target missing' };
            }
            case 'type': {
                const input = document.querySelector(action.selector);
                if (!input) {
                    return { success: false, error: 'Input not found', selector: action.selector };
                }
                input.focus();
                input.value = action.text;
                input.dispatchEvent(new Event('input', { bubbles: true }));
                input.dispatchEvent(new Event('change', { bubbles: true }));
                return { success: true, selector: action.selector, text: action.text };
            }
            case 'scroll': {
                const amount = action.amount || 500;
                const moves = { down: [0, amount], up: [0, -amount], left: [-amount, 0], right: [amount, 0] };
                const move = moves[action.direction || 'down'];
                if (move) {
                    window.scrollBy(move[0], move[1]);
                }
                return { success: true, direction: action.direction || 'down', amount: amount };
            }
            case 'wait':
                return { success: true, duration: action.duration };
            default:
                return { success: false, error: 'Unknown action type: ' + action.type };
        }
    } catch (error) {
        return { success: false, error: error.message };
    }
}
"""
