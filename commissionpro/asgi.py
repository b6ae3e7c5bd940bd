import os
import django
from django.core.asgi import get_asgi_application

# Configure Django settings before importing anything that might use models
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'commissionpro.settings')
django.setup()

from channels.routing import ProtocolTypeRouter

# Notification sockets are served by the notification collaborator; this
# process only publishes to the channel layer.
application = ProtocolTypeRouter({
    "http": get_asgi_application(),
})
