"""factory_boy factories for registry models.

Factories need a session before use; the fixtures in portregistry/conftest.py
bind them to a registry session.
"""

import factory
from factory.alchemy import SQLAlchemyModelFactory

from portregistry.storage.models import FileMapping, Port


class PortFactory(SQLAlchemyModelFactory):
    class Meta:
        model = Port
        sqlalchemy_session_persistence = "commit"

    name = factory.Faker("word")
    portfile = factory.LazyAttribute(lambda o: f"/ports/sysutils/{o.name}/Portfile")
    url = factory.LazyAttribute(lambda o: f"file:///ports/sysutils/{o.name}")
    location = None
    epoch = "0"
    version = factory.Sequence(lambda n: f"1.{n}.0")
    revision = "0"
    variants = ""
    state = "installed"
    date = factory.LazyFunction(lambda: "1190592000")


class FileMappingFactory(SQLAlchemyModelFactory):
    class Meta:
        model = FileMapping
        sqlalchemy_session_persistence = "commit"

    port = factory.SubFactory(PortFactory)
    path = factory.Sequence(lambda n: f"/opt/local/share/doc/file{n}.txt")
    mtime = None
