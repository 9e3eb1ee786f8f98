"""Demo script for ConversationTree branching."""
import sys
sys.path.insert(0, '.')

from config import STORE_BACKEND
from services.conversation_store import create_store
from services.conversation_tree import ConversationTree


def print_forest(nodes, depth=0):
    for node in nodes:
        print(f"{'  ' * depth}- {node.title} [{node.conversation_id}] ({node.message_count} messages)")
        print_forest(node.children, depth + 1)


def main():
    """Walk through creating, branching and listing conversations."""
    print("=== ConversationTree Demo ===\n")

    try:
        print(f"1. Initializing ConversationTree with '{STORE_BACKEND}' store...")
        tree = ConversationTree(create_store(STORE_BACKEND))
        print("✓ ConversationTree initialized\n")

        print("2. Creating a conversation and adding messages...")
        conversation = tree.create_conversation()
        conversation_id = conversation.conversation_id
        tree.append_message(conversation_id, "user", "hello")
        tree.append_message(conversation_id, "assistant", "hi there")
        question = tree.append_message(conversation_id, "user", "how are you")
        tree.append_message(conversation_id, "assistant", "good")
        print(f"✓ Created conversation: {conversation_id}\n")

        print("3. Editing 'how are you' into a branch...")
        branch_id = tree.edit_message(conversation_id, question.message_id, "what's up")
        print(f"✓ Created branch: {branch_id}")
        for message in tree.get_history(branch_id):
            print(f"    {message.role}: {message.content}")
        print()

        print("4. Original conversation is unchanged:")
        for message in tree.get_history(conversation_id):
            print(f"    {message.role}: {message.content}")
        print()

        print("5. Forest:")
        print_forest(tree.get_forest())
        print("\n=== Demo complete ===")

    except Exception as e:
        print(f"✗ Error: {e}")
        import traceback
        traceback.print_exc()


if __name__ == "__main__":
    main()
