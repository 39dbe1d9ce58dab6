from starlette.types import ASGIApp, Receive, Scope, Send


class TrustedProxiesMiddleware:
    """Rewrites ``scope["client"]`` from X-Forwarded-For behind a fixed number of proxies.

    Rate limiting keys on the client address, so it must be the borrower's and
    not the load balancer's.
    """

    def __init__(self, app: ASGIApp, proxies_count: int = 1) -> None:
        self.app = app
        self.proxies_count = proxies_count

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and self.proxies_count > 0:
            forwarded = dict(scope.get("headers", [])).get(b"x-forwarded-for", b"").decode()
            hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
            if len(hops) > self.proxies_count:
                port = scope["client"][1] if scope.get("client") else 0
                scope["client"] = (hops[-(self.proxies_count + 1)], port)

        await self.app(scope, receive, send)
