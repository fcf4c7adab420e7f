from fastapi import Request
from image_share.messaging.bus import MessageBus
from image_share.share_service.workflow import ShareWorkflow

def get_message_bus(request: Request) -> MessageBus:
    """Dependency provider for MessageBus"""
    return request.app.state.bus

def get_share_workflow(request: Request) -> ShareWorkflow:
    """Dependency provider for ShareWorkflow"""
    return request.app.state.share_workflow
