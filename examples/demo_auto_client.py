#!/usr/bin/env python3
"""Demonstration of the schema-driven GraphQL client.

This script shows how to:
1. Parse a GraphQL schema
2. Create a client exposing every operation
3. Build and display operation strings

Note: This demo doesn't make real API calls - it just demonstrates
the query generation capabilities.
"""

from gql_autoclient.core import (
    FieldExclusion,
    GraphQLClient,
    MissingArgument,
    parse_sdl,
)

SCHEMA = """
scalar DateTime

type Transaction {
  hash: String!
  sender: String
  receiver: String
  time: DateTime
  block: Block
}

type Block {
  height: Int!
  hash: String!
  time: DateTime
  transactions: [Transaction]
  proposer: Account
}

type Account {
  address: String!
  balance: String
  secretKey: String
}

type Query {
  getBlockByHeight(height: Int!): Block
  getAccountState(address: String!): Account
  getChainHeight: Int
}

type Subscription {
  newBlockMined: Block
}
"""


def main():
    print("=== Auto GraphQL Client Demo ===\n")

    print("1. Parsing GraphQL schema...")
    ir = parse_sdl(SCHEMA)
    print(f"   {len(ir.types)} types (including built-in scalars)")

    print("\n2. Creating client...")
    client = GraphQLClient(ir, data_source="eth", exclude=FieldExclusion(["Account.secretKey"]))
    print(f"   HTTP endpoint:   {client.config.http_url}")
    print(f"   Socket endpoint: {client.config.socket_url}")
    print(f"   Queries:       {client.get_queries()}")
    print(f"   Mutations:     {client.get_mutations()}")
    print(f"   Subscriptions: {client.get_subscriptions()}")

    print("\n3. Example: getBlockByHeight")
    get_block = client.operation("getBlockByHeight")
    print(f"   Arguments: {dict(get_block.args)}")
    print(get_block.builder({"height": 1000}))

    print("\n4. Missing required arguments are reported before sending")
    try:
        get_block.builder({})
    except MissingArgument as exc:
        print(f"   {exc}")

    print("\n5. Example: newBlockMined subscription")
    print(client.operation("newBlockMined").builder())

    print("\n=== Demo Complete ===")
    print("\nUsage example (against a live endpoint):")
    print("""
    async with GraphQLClient(ir, data_source="eth") as client:
        block = await client.call("getBlockByHeight", height=1000)

        stream = await client.subscribe("newBlockMined")
        stream.on("data", print)
    """)


if __name__ == "__main__":
    main()
