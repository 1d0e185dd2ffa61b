"""Client-side recovery handlers emitted alongside rewritten images.

Each rewritten image carries an inline ``onerror`` handler that swaps back to
the origin exactly once. Lazily-loaded images can fail silently when the
browser serves a cached negative response, so a bounded polling sweep looks for
images that finished loading with zero width and pushes them through the same
fallback.
"""

from __future__ import annotations

from string import Template

LOADED_CLASS = "img-cdn-loaded"
CHECK_INTERVAL_MS = 2000
MAX_CHECKS = 10
START_DELAY_MS = 100
LAZY_SELECTOR = 'img[loading="lazy"][data-original-src]'


def _warm_statements(el: str, debug: bool) -> str:
    # Warm the worker with the origin directory plus the filename that actually
    # failed, which may carry a size suffix or cache buster.
    statements = (
        "var failedFilename=failedCdnUrl.split('/').pop();"
        f"var originBase={el}.dataset.originalSrc;"
        "var originDir=originBase.substring(0,originBase.lastIndexOf('/')+1);"
        "var originVariantUrl=originDir+failedFilename;"
        f"var warmUrl='https://'+{el}.dataset.workerDomain+'/'"
        "+originVariantUrl.replace(/^https?:\\/\\//,'');"
        "(new Image()).src=warmUrl;"
    )
    if debug:
        statements += "console.log('img-cdn: warming origin variant',originVariantUrl,'via',warmUrl);"
    return f"if({el}.dataset.workerDomain){{{statements}}}"


def _first_failure(el: str, debug: bool) -> str:
    parts = []
    if debug:
        parts.append(f"var t0=Date.now();{el}.dataset.fallbackStart=t0;")
    parts.append(f"var failedCdnUrl={el}.currentSrc||{el}.src;")
    if debug:
        parts.append(
            "console.log('img-cdn: CDN failed for',failedCdnUrl,"
            f"'-> loading from',{el}.dataset.originalSrc);"
        )
    parts.append(
        f"{el}.dataset.fallback='1';"
        f"{el}.classList.remove('{LOADED_CLASS}');"
        f"{el}.removeAttribute('srcset');"
        f"{el}.removeAttribute('sizes');"
        f"{el}.src={el}.dataset.originalSrc;"
    )
    onload = f"{el}.classList.add('{LOADED_CLASS}');{el}.onload=null"
    if debug:
        onload = "console.log('img-cdn: origin loaded in '+(Date.now()-t0)+'ms');" + onload
    parts.append(f"{el}.onload=function(){{{onload}}};")
    parts.append(_warm_statements(el, debug))
    return "".join(parts)


def onload_handler() -> str:
    return f"this.classList.add('{LOADED_CLASS}')"


def onerror_handler(debug: bool = False) -> str:
    """Inline handler: first failure falls back to origin, second one is terminal."""
    handler = "if(!this.dataset.fallback){" + _first_failure("this", debug) + "}"
    terminal = (
        "this.dataset.fallback='2';"
        f"this.classList.remove('{LOADED_CLASS}');"
        "this.onerror=null"
    )
    if debug:
        handler += (
            "else if(this.dataset.fallback==='1'){"
            "var elapsed=this.dataset.fallbackStart?"
            "(Date.now()-this.dataset.fallbackStart)+'ms':'unknown';"
            "console.error('img-cdn: origin also failed after',elapsed,'for',"
            "this.dataset.originalSrc);"
            f"{terminal}}}"
            "else{console.warn('img-cdn: unexpected fallback state',"
            "this.dataset.fallback);this.onerror=null}"
        )
    else:
        handler += "else{" + terminal + "}"
    return handler


_LAZY_TEMPLATE = Template(
    """<script>
(function() {
    'use strict';

    var intervalId = null;
    var checkCount = 0;
    var maxChecks = $max_checks;

    function fallback(img) {
        $fallback
    }

    function checkLazyImages() {
        var lazyImages = document.querySelectorAll('$selector');
        var needsChecking = false;
        $log_check
        lazyImages.forEach(function(img) {
            if (img.dataset.fallback) {
                return;
            }
            if (img.complete && img.naturalWidth === 0) {
                fallback(img);
            } else if (!img.complete) {
                needsChecking = true;
            }
        });

        checkCount++;
        if (!needsChecking || checkCount >= maxChecks) {
            if (intervalId) {
                clearInterval(intervalId);
                intervalId = null;
                $log_stop
            }
        }
    }

    function startChecking() {
        if (!intervalId) {
            checkCount = 0;
            checkLazyImages();
            intervalId = setInterval(checkLazyImages, $interval);
            $log_start
        }
    }

    if (document.readyState === 'loading') {
        document.addEventListener('DOMContentLoaded', function() {
            setTimeout(startChecking, $start_delay);
        });
    } else {
        setTimeout(startChecking, $start_delay);
    }

    if ('MutationObserver' in window) {
        var observer = new MutationObserver(function(mutations) {
            var hasNewLazyImages = false;
            mutations.forEach(function(mutation) {
                mutation.addedNodes.forEach(function(node) {
                    if (node.nodeType !== 1) {
                        return;
                    }
                    if (node.tagName === 'IMG' && node.getAttribute('loading') === 'lazy' && node.dataset.originalSrc) {
                        hasNewLazyImages = true;
                    }
                    if (node.querySelectorAll && node.querySelectorAll('$selector').length > 0) {
                        hasNewLazyImages = true;
                    }
                });
            });
            if (hasNewLazyImages) {
                $log_restart
                startChecking();
            }
        });
        observer.observe(document.body || document.documentElement, {
            childList: true,
            subtree: true
        });
    }
})();
</script>"""
)


def lazy_recovery_script(debug: bool = False) -> str:
    """Render the lazy-image sweep as a ``<script>`` block."""

    def log(statement: str) -> str:
        return statement if debug else ""

    return _LAZY_TEMPLATE.substitute(
        max_checks=MAX_CHECKS,
        interval=CHECK_INTERVAL_MS,
        start_delay=START_DELAY_MS,
        selector=LAZY_SELECTOR,
        fallback=_first_failure("img", debug),
        log_check=log(
            "console.log('img-cdn: checking ' + lazyImages.length + "
            "' lazy images (check #' + (checkCount + 1) + ')');"
        ),
        log_stop=log(
            "console.log('img-cdn: stopped checking lazy images' + "
            "(checkCount >= maxChecks ? ' (max checks reached)' : ' (all resolved)'));"
        ),
        log_start=log("console.log('img-cdn: started checking lazy images');"),
        log_restart=log("console.log('img-cdn: new lazy images detected, restarting checks');"),
    )
