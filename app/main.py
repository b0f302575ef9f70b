import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.v1 import index
from app.api.v1 import rfq
from app.api.v1 import supplier_rfq
from app.api.v1 import notification


from app.core.config import settings
from app.core.exceptions import RfqWorkflowError
from app.core.logging import setup_logging

setup_logging()

app = FastAPI(title=settings.app_name)

# Middlewares
origins = []

if settings.allowed_hosts:
    origins = settings.allowed_hosts.split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RfqWorkflowError)
async def rfq_workflow_error_handler(request: Request, exc: RfqWorkflowError):
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.detail,
            "code": exc.code,
            "retryable": exc.retryable,
            "fields": exc.fields,
        },
        headers=headers,
    )


# Register routes
app.include_router(index.router, prefix="/api/v1")
app.include_router(rfq.router, prefix="/api/v1/rfqs", tags=["RFQs"])
app.include_router(supplier_rfq.router,
                   prefix="/api/v1/supplier/rfqs", tags=["Supplier RFQs"])
app.include_router(notification.router,
                   prefix="/api/v1/notifications", tags=["Notifications"])

if __name__ == "__main__":
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_config=None,
        log_level=None,
    )
