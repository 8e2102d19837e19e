# Importing the package registers every model with Base.metadata
from diagramcore.models.diagram import Diagram
from diagramcore.models.folder import Folder
from diagramcore.models.share import DiagramShare, FolderShare
from diagramcore.models.user import User

__all__ = ["Diagram", "DiagramShare", "Folder", "FolderShare", "User"]
