import asyncio
import websockets
from PIL import Image, UnidentifiedImageError
import io
import os
import itertools
import logging
import socket
import traceback

logger = logging.getLogger(__name__)

# Constants
ACK_MESSAGE = "ACK:image_received"
MIN_IMAGE_SIZE = 8  # Shorter payloads cannot carry a valid signature

# Leading bytes -> file extension, checked in order
SIGNATURES = [
    (b"\xff\xd8", "jpg"),
    (b"\x89PNG\r\n\x1a\n", "png"),
    (b"GIF", "gif"),
    (b"BM", "bmp"),
    (b"II", "tiff"),
    (b"MM", "tiff"),
]


# Identify the image format of the received bytes
def identify_image_format(data):
    if len(data) < MIN_IMAGE_SIZE:
        return "unknown"
    for signature, extension in SIGNATURES:
        if data.startswith(signature):
            return extension

    # Other formats Pillow knows about, from the header only
    try:
        with Image.open(io.BytesIO(data)) as image:
            image_format = image.format
    except UnidentifiedImageError:
        logger.debug("Failed to identify image.")
        return "unknown"
    except Image.DecompressionBombError as e:
        logger.warning(f"Image too large to identify: {e}")
        return "unknown"
    except OSError as e:
        logger.debug(f"Error reading image header: {e}")
        return "unknown"
    if not image_format:
        return "unknown"
    return image_format.lower()


def save_image(filename, data):
    """Write the received bytes to filename. Returns False on failure."""
    try:
        with open(filename, "wb") as f:
            f.write(data)
    except OSError as e:
        logger.error(f"Cannot write image to {filename}: {e}")
        return False
    logger.info(f"Image saved as: {filename}")
    return True


def local_ipv4_addresses():
    try:
        infos = socket.getaddrinfo(socket.gethostname(), None, socket.AF_INET)
    except socket.gaierror as e:
        logger.error(f"Cannot resolve local addresses: {e}")
        return []
    return sorted({info[4][0] for info in infos})


# WebSocket handler
async def handle_client(websocket, counter, output_dir):
    logger.info("Connection received from client.")
    loop = asyncio.get_running_loop()
    try:
        async for message in websocket:
            if isinstance(message, bytes):
                logger.debug(f"Received image data of size {len(message)} bytes.")
                number = next(counter)
                extension = identify_image_format(message)
                filename = os.path.join(output_dir, f"image_received_{number}.{extension}")

                await loop.run_in_executor(None, save_image, filename, message)

                try:
                    await websocket.send(ACK_MESSAGE)
                except websockets.exceptions.ConnectionClosed as e:
                    logger.error(f"Error sending ACK to client: {e}")
                    traceback_str = ''.join(traceback.format_exception(None, e, e.__traceback__))
                    logger.debug(f"Traceback: {traceback_str}")
                    return
            else:
                logger.info(f"Text message received: {message}")

    except websockets.exceptions.ConnectionClosed as e:
        logger.warning(f"Client disconnected: {e}")
        return
    logger.info("Client closed the connection.")


# WebSocket server main
async def main(host, port, output_dir):
    counter = itertools.count(1)  # Shared by every connection

    for address in local_ipv4_addresses():
        logger.info(f"Local IPv4 address to give to the client: {address}")

    server = await websockets.serve(
        lambda ws: handle_client(ws, counter, output_dir),
        host, port,
        max_size=None
    )
    logger.info("Server started and waiting for connections...")
    logger.info(f"Connect to the WebSocket at ws://{host}:{port}")
    await server.wait_closed()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s %(levelname)s:%(message)s',
        handlers=[
            logging.FileHandler("server.log"),  # Log to a file named server.log
            logging.StreamHandler()  # Also output logs to the console
        ]
    )

    # Parameters
    HOST = "0.0.0.0"
    PORT = 5000
    OUTPUT_DIR = "."

    os.makedirs(OUTPUT_DIR, exist_ok=True)
    logger.info(f"Starting WebSocket server at ws://{HOST}:{PORT}")
    asyncio.run(main(HOST, PORT, OUTPUT_DIR))
