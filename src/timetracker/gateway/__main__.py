"""Gateway 启动入口 -- python -m timetracker.gateway 或 timetracker-gateway

监听地址来自 GatewayConfig（TIMETRACKER_HOST / TIMETRACKER_PORT）。
"""

import uvicorn

from .config import load_gateway_config


def main() -> None:
    config = load_gateway_config()
    uvicorn.run(
        "timetracker.gateway.main:app",
        host=config.host,
        port=config.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
