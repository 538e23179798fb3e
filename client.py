import asyncio
import logging
import sys
from pathlib import Path

from connection import Connection, ConnectionNotOpenError, SERVER_URL

logger = logging.getLogger(__name__)


class FileReadError(Exception):
    """Raised when a selected file cannot be read into memory."""


def read_file(path):
    """Read the whole file into memory."""
    try:
        with open(path, "rb") as f:
            return f.read()
    except OSError as e:
        raise FileReadError(f"Cannot read {path}: {e}") from e


class FileInput:
    """File selection surface. Each select() call is one change event."""

    def __init__(self):
        self._listeners = []

    def add_change_listener(self, listener):
        self._listeners.append(listener)

    def select(self, *paths):
        files = [Path(p) for p in paths]
        for listener in list(self._listeners):
            listener(files)


class UploadClient:
    """
    Forwards every file picked on the file input to the server as one binary frame.

    The change listener is registered at construction; sends made while the
    connection is not open fail with ConnectionNotOpenError, which is logged
    and aborts that upload only.
    """

    def __init__(self, connection, file_input):
        self.connection = connection
        self.file_input = file_input
        self._uploads = set()
        self.file_input.add_change_listener(self.on_selection_change)

    async def run(self):
        await self.connection.run(self)

    def on_open(self):
        logger.info("Connexion établie avec le serveur.")

    def on_selection_change(self, files):
        if not files:
            return
        task = asyncio.get_running_loop().create_task(self._upload_selected(files[0]))
        self._uploads.add(task)
        task.add_done_callback(self._uploads.discard)

    async def _upload_selected(self, path):
        try:
            await self.upload(path)
        except FileReadError as e:
            logger.error(f"Erreur de lecture du fichier : {e}")
        except ConnectionNotOpenError as e:
            logger.error(f"Envoi impossible : {e}")

    async def upload(self, path):
        # The file is fully buffered before anything is sent
        data = await asyncio.get_running_loop().run_in_executor(None, read_file, path)
        logger.debug(f"Read {len(data)} bytes from {path}.")
        await self.connection.send(data)
        logger.info("Image envoyée au serveur.")
        return len(data)

    async def wait_uploads(self):
        if self._uploads:
            await asyncio.gather(*self._uploads)

    def on_message(self, message):
        logger.info(f"Réponse du serveur : {message}")

    def on_error(self, error):
        logger.error(f"Erreur WebSocket : {error}")

    def on_close(self):
        logger.info("Connexion fermée.")


async def prompt_for_files(file_input, stream=sys.stdin):
    """Feed paths read line by line from stream to the file input until EOF."""
    loop = asyncio.get_running_loop()
    while True:
        line = await loop.run_in_executor(None, stream.readline)
        if not line:
            break
        path = line.strip()
        if path:
            file_input.select(path)
        else:
            file_input.select()


async def main(url=SERVER_URL):
    connection = Connection(url)
    file_input = FileInput()
    client = UploadClient(connection, file_input)

    connection_task = asyncio.create_task(client.run())
    print("Enter the path of an image to send it (Ctrl-D to quit).")
    await prompt_for_files(file_input)

    await client.wait_uploads()
    await connection.close()
    await connection_task


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s %(levelname)s:%(message)s',
        handlers=[logging.StreamHandler()]
    )
    asyncio.run(main())
