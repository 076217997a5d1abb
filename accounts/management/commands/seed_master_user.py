import logging
import os

from django.core.management.base import BaseCommand

from accounts.models import Role, User

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Create the default master user (admin) if it does not exist."

    def add_arguments(self, parser):
        parser.add_argument("--username", default="admin")
        parser.add_argument("--email", default="admin@realtyflow.local")
        parser.add_argument(
            "--password",
            default=os.environ.get("MASTER_USER_PASSWORD", "admin"),
        )

    def handle(self, *args, **opts):
        if User.objects.filter(username=opts["username"]).exists():
            self.stdout.write(f"Master user '{opts['username']}' already exists.")
            return

        user = User(
            username=opts["username"],
            email=opts["email"],
            first_name="Master",
            last_name="Admin",
            role=Role.MASTER,
            is_staff=True,
            is_superuser=True,
        )
        user.set_password(opts["password"])
        user.save()
        logger.info("Master user created: %s", user.username)
        self.stdout.write(self.style.SUCCESS(f"Master user created: {user.username}"))
