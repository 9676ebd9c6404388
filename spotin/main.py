import logging
import sys

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from spotin.config import settings
from spotin.routers import audit, auth, checkin, clients, inventory, orders
from spotin.security.headers import install_security_headers
from spotin.security.sessions import install_auth_session_middleware

LOG_FORMAT = '%(asctime)s %(levelname)s %(name)s: %(message)s'
LOG_HANDLER_NAME = 'spotin-stdout'


def configure_logging(level: str | None = None) -> None:
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, (level or settings.log_level).upper(), logging.INFO))
    if not any(handler.get_name() == LOG_HANDLER_NAME for handler in root_logger.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.set_name(LOG_HANDLER_NAME)
        root_logger.addHandler(handler)


configure_logging()

app = FastAPI(title='Spotin Back Office')

install_auth_session_middleware(app)
install_security_headers(app)
# Added last so it wraps the auth middleware and answers preflight requests itself.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_methods=['*'],
    allow_headers=['authorization', 'x-client-info', 'apikey', 'content-type'],
    allow_credentials=settings.cors_origins_list != ['*'],
)

app.include_router(auth.router)
app.include_router(checkin.router)
app.include_router(orders.router)
app.include_router(inventory.router)
app.include_router(clients.router)
app.include_router(audit.router)


@app.get('/health')
def health() -> dict:
    return {'status': 'ok'}
