"""Shared fixtures: a small blog schema and an in-memory channel server."""

import asyncio
import json

import pytest

from gql_autoclient.core.parser import parse_sdl

BLOG_SDL = '''
scalar DateTime

enum Role {
  ADMIN
  MEMBER
}

type User {
  id: ID!
  name: String
  password: String
  role: Role
  friends: [User!]
  posts(first: Int): [Post]
  bestFriend: User
  secret(token: String!): String
}

type Post {
  id: ID!
  title: String
  author: User
  createdAt: DateTime
}

union SearchResult = User | Post

input PostFilter {
  authorId: ID
  roles: [Role!]
  since: DateTime
}

type Query {
  getUser(id: ID!): User
  listPosts(filter: PostFilter, limit: Int = 10): [Post]
  search(term: String!): [SearchResult]
  serverTime: DateTime
  usersByRole(role: Role!): [User]
}

type Mutation {
  createPost(title: String!, authorId: ID!): Post
}

type Subscription {
  postAdded(authorId: ID): Post
  userUpdated(id: ID!): User
}
'''


@pytest.fixture
def blog_sdl():
    return BLOG_SDL


@pytest.fixture
def blog_schema():
    return parse_sdl(BLOG_SDL)


class FakeConnection:
    """One in-memory websocket connection to a FakeChannelServer."""

    def __init__(self, server: "FakeChannelServer"):
        self.server = server
        self.sent: list[dict] = []
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.closed = False

    async def send(self, message: str):
        if self.closed:
            raise ConnectionResetError("connection closed")
        frame = json.loads(message)
        self.sent.append(frame)
        self.server.handle(self, frame)

    async def recv(self):
        item = await self.inbox.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self):
        self.closed = True

    def push(self, topic, event, payload, ref=None):
        self.inbox.put_nowait(json.dumps({"topic": topic, "event": event, "payload": payload, "ref": ref}))

    def fail(self, exc: BaseException | None = None):
        """Make the next recv() raise, as a dropped socket would."""
        self.inbox.put_nowait(exc or ConnectionResetError("connection reset by peer"))


class FakeChannelServer:
    """Answers joins and subscribe pushes the way an Absinthe socket does."""

    def __init__(self):
        self.connections: list[FakeConnection] = []
        self.urls: list[str] = []
        self.connect_times: list[float] = []
        self.reject_join = False
        self.reject_queries: set[str] = set()
        self.reply_to_docs = True
        self.refuse_connections = 0
        self.subscription_ids: list[str] = []
        self.data_after_doc = None

    async def connect(self, url: str) -> FakeConnection:
        self.urls.append(url)
        self.connect_times.append(asyncio.get_running_loop().time())
        if self.refuse_connections:
            self.refuse_connections -= 1
            raise ConnectionRefusedError("connection refused")
        connection = FakeConnection(self)
        self.connections.append(connection)
        return connection

    @property
    def connection(self) -> FakeConnection:
        return self.connections[-1]

    def frames(self, event: str, connection: FakeConnection | None = None) -> list[dict]:
        connections = [connection] if connection else self.connections
        return [frame for conn in connections for frame in conn.sent if frame["event"] == event]

    def handle(self, connection: FakeConnection, frame: dict):
        event = frame["event"]
        if event == "phx_join":
            if self.reject_join:
                self._reply(connection, frame, "error", {"reason": "unauthorized"})
            else:
                self._reply(connection, frame, "ok", {})
        elif event == "doc":
            if not self.reply_to_docs:
                return
            query = frame["payload"]["query"]
            if any(marker in query for marker in self.reject_queries):
                self._reply(connection, frame, "error", {"errors": [{"message": "rejected"}]})
                return
            subscription_id = f"__absinthe__:doc:{len(self.subscription_ids) + 1}"
            self.subscription_ids.append(subscription_id)
            self._reply(connection, frame, "ok", {"subscriptionId": subscription_id})
            if self.data_after_doc is not None:
                self._push_data(connection, subscription_id, self.data_after_doc)
        elif event in ("unsubscribe", "heartbeat"):
            self._reply(connection, frame, "ok", {})

    @staticmethod
    def _reply(connection, frame, status, response):
        connection.push(frame["topic"], "phx_reply", {"status": status, "response": response}, ref=frame["ref"])

    def publish(self, subscription_id: str, data):
        self._push_data(self.connection, subscription_id, data)

    @staticmethod
    def _push_data(connection, subscription_id, data):
        connection.push(
            subscription_id,
            "subscription:data",
            {"subscriptionId": subscription_id, "result": {"data": data}},
        )


@pytest.fixture
def channel_server():
    return FakeChannelServer()


@pytest.fixture
def eventually():
    """Poll a condition until it holds or the timeout expires."""

    async def wait(predicate, timeout: float = 1.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.005)

    return wait
