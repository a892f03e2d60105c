"""
GED — Document, folder and mail ("courrier") management core.

Services are plain objects wired by constructor injection:

    db = Database.from_config(config.database)
    folders = FolderTree(db, config.folders, audit)
    documents = DocumentStore(db, FileStorage(config.storage), codes, audit)
    router = NotificationRouter(db, audit)
    mails = MailWorkflow(db, router, codes, config.mail, audit)
"""

__version__ = "1.0.0"
__all__ = ["engine", "db", "documents", "mail", "security"]
