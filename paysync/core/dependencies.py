from fastapi import Depends, Request

from .container import ApplicationContainer


def get_container(request: Request) -> ApplicationContainer:
    container = getattr(request.app.state, "container", None)
    if not container:
        raise RuntimeError("Application container not initialised.")
    return container


def get_auth_service(container: ApplicationContainer = Depends(get_container)):
    return container.auth_service


def get_catalog_service(container: ApplicationContainer = Depends(get_container)):
    return container.catalog_service


def get_checkout_service(container: ApplicationContainer = Depends(get_container)):
    return container.checkout_service


def get_subscription_reconciler(container: ApplicationContainer = Depends(get_container)):
    return container.subscription_reconciler


def get_webhook_processor(container: ApplicationContainer = Depends(get_container)):
    return container.webhook_processor


def get_gift_service(container: ApplicationContainer = Depends(get_container)):
    return container.gift_service


def get_privilege_resolver(container: ApplicationContainer = Depends(get_container)):
    return container.privilege_resolver
